"""Human review feedback."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .invoice import to_jsonable
from .timestamps import utc_now_iso


@dataclass
class FieldCorrection:
    """A reviewer's correction of one field."""

    field: str
    corrected_value: Any
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "corrected_value": to_jsonable(self.corrected_value),
            "reason": self.reason,
        }


@dataclass
class HumanFeedback:
    """Result of a human review of one invoice."""

    invoice_id: str
    corrections: list[FieldCorrection] = field(default_factory=list)
    approved: bool = False
    comments: Optional[str] = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "corrections": [c.to_dict() for c in self.corrections],
            "approved": self.approved,
            "comments": self.comments,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HumanFeedback":
        """Create from dictionary. Raises KeyError/ValueError on malformed input."""
        corrections = data.get("corrections") or []
        if not isinstance(corrections, list):
            raise ValueError("corrections must be a list")
        return cls(
            invoice_id=str(data["invoice_id"]),
            corrections=[
                FieldCorrection(
                    field=c["field"],
                    corrected_value=c.get("corrected_value"),
                    reason=c.get("reason"),
                )
                for c in corrections
            ],
            approved=bool(data.get("approved", False)),
            comments=data.get("comments"),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )
