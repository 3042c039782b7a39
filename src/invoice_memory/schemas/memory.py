"""
Memory data model.

A Memory is a persisted, scored heuristic rule. It is a tagged union: the
`type` discriminant selects which payload `details` carries.

- VENDOR      -> VendorRule       (trigger signal + action)
- CORRECTION  -> CorrectionRule   (field + pattern + corrected value)
- RESOLUTION  -> ResolutionRecord (how a review scenario was resolved)

Base fields are shared; variant attributes live only in the payload.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .timestamps import utc_now_iso

# Sentinel original_pattern: the correction applies unconditionally
HUMAN_CORRECTION_PATTERN = "human_correction"


class MemoryType(str, Enum):
    """Memory discriminant."""

    VENDOR = "vendor"
    CORRECTION = "correction"
    RESOLUTION = "resolution"


class ActionKind(str, Enum):
    """What a vendor memory does once its trigger matches."""

    FIELD_MAPPING = "field_mapping"
    INFERENCE = "inference"
    COMPUTATION = "computation"


class Strategy(str, Enum):
    """Known vendor action strategies."""

    # field_mapping
    EXTRACT_FROM_TEXT = "extract_from_text"
    SKU_MAPPING = "sku_mapping"
    # inference
    PO_FROM_ITEMS = "po_from_items"
    CURRENCY_FROM_TEXT = "currency_from_text"
    VENDOR_DEFAULT_CURRENCY = "vendor_default_currency"
    # computation
    VAT_INCLUDED_DETECTION = "vat_included_detection"
    VAT_INCLUDED_ADJUSTMENT = "vat_included_adjustment"
    TOTAL_FROM_ITEMS = "total_from_items"


# Label whose following date is the service date ("Leistungsdatum: 2024-01-10")
SERVICE_DATE_LABEL = "Leistungsdatum"


class ResolutionOutcome(str, Enum):
    """How a human resolved an invoice."""

    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


@dataclass
class VendorAction:
    """Action of a vendor memory."""

    kind: ActionKind
    target_field: str
    source_field: Optional[str] = None
    value: Any = None
    strategy: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "target_field": self.target_field,
            "source_field": self.source_field,
            "value": self.value,
            "strategy": self.strategy,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VendorAction":
        return cls(
            kind=ActionKind(data["kind"]),
            target_field=data["target_field"],
            source_field=data.get("source_field"),
            value=data.get("value"),
            strategy=data.get("strategy"),
        )


@dataclass
class VendorRule:
    """Payload of a VENDOR memory."""

    trigger_signal: str
    action: VendorAction
    pattern: str  # Human-readable label, e.g. "leistungsdatum_mapping"

    def to_dict(self) -> dict:
        return {
            "trigger_signal": self.trigger_signal,
            "action": self.action.to_dict(),
            "pattern": self.pattern,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VendorRule":
        return cls(
            trigger_signal=data["trigger_signal"],
            action=VendorAction.from_dict(data["action"]),
            pattern=data.get("pattern", ""),
        )


@dataclass
class CorrectionRule:
    """Payload of a CORRECTION memory."""

    field_name: str
    original_pattern: str  # HUMAN_CORRECTION_PATTERN or regex/substring
    corrected_value: Any
    correction_reason: str
    approval_count: int = 0
    rejection_count: int = 0

    def to_dict(self) -> dict:
        return {
            "field_name": self.field_name,
            "original_pattern": self.original_pattern,
            "corrected_value": self.corrected_value,
            "correction_reason": self.correction_reason,
            "approval_count": self.approval_count,
            "rejection_count": self.rejection_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CorrectionRule":
        return cls(
            field_name=data["field_name"],
            original_pattern=data["original_pattern"],
            corrected_value=data.get("corrected_value"),
            correction_reason=data.get("correction_reason", ""),
            approval_count=data.get("approval_count", 0),
            rejection_count=data.get("rejection_count", 0),
        )


@dataclass
class ResolutionRecord:
    """Payload of a RESOLUTION memory. Recalled for audit only."""

    scenario: str
    outcome: ResolutionOutcome
    system_action: str
    human_feedback: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "scenario": self.scenario,
            "outcome": self.outcome.value,
            "system_action": self.system_action,
            "human_feedback": self.human_feedback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResolutionRecord":
        return cls(
            scenario=data["scenario"],
            outcome=ResolutionOutcome(data["outcome"]),
            system_action=data.get("system_action", ""),
            human_feedback=data.get("human_feedback"),
        )


MemoryDetails = Union[VendorRule, CorrectionRule, ResolutionRecord]

_DETAILS_BY_TYPE: dict[MemoryType, type] = {
    MemoryType.VENDOR: VendorRule,
    MemoryType.CORRECTION: CorrectionRule,
    MemoryType.RESOLUTION: ResolutionRecord,
}


def details_from_dict(memory_type: MemoryType, data: dict) -> MemoryDetails:
    """Build the payload matching a memory type."""
    return _DETAILS_BY_TYPE[MemoryType(memory_type)].from_dict(data)


def new_memory_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Memory:
    """
    A scored heuristic rule for one vendor.

    Confidence stays within [min_confidence, max_confidence] while active;
    memories are never deleted, only deactivated.
    """

    type: MemoryType
    vendor: str
    details: MemoryDetails
    confidence: float
    id: str = field(default_factory=new_memory_id)
    usage_count: int = 0
    created_at: str = field(default_factory=utc_now_iso)
    last_used_at: Optional[str] = None
    last_updated_at: str = field(default_factory=utc_now_iso)
    last_decayed_at: Optional[str] = None
    is_active: bool = True

    def __post_init__(self) -> None:
        self.type = MemoryType(self.type)
        expected = _DETAILS_BY_TYPE[self.type]
        if not isinstance(self.details, expected):
            raise ValueError(
                f"{self.type.value} memory requires {expected.__name__} details, "
                f"got {type(self.details).__name__}"
            )

    @property
    def field_name(self) -> Optional[str]:
        """Indexed field for correction memories."""
        if isinstance(self.details, CorrectionRule):
            return self.details.field_name
        return None

    @property
    def pattern(self) -> Optional[str]:
        """Indexed pattern: vendor label or correction original pattern."""
        if isinstance(self.details, VendorRule):
            return self.details.pattern
        if isinstance(self.details, CorrectionRule):
            return self.details.original_pattern
        return None

    def describe(self) -> str:
        """One-line human-readable summary."""
        d = self.details
        if isinstance(d, VendorRule):
            return f"{d.trigger_signal!r} -> {d.action.target_field} ({d.action.kind.value})"
        if isinstance(d, CorrectionRule):
            return f"{d.field_name} := {d.corrected_value!r} ({d.correction_reason})"
        return f"{d.scenario}: {d.outcome.value}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "vendor": self.vendor,
            "confidence": self.confidence,
            "usage_count": self.usage_count,
            "created_at": self.created_at,
            "last_used_at": self.last_used_at,
            "last_updated_at": self.last_updated_at,
            "last_decayed_at": self.last_decayed_at,
            "is_active": self.is_active,
            "details": self.details.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Memory":
        memory_type = MemoryType(data["type"])
        details = details_from_dict(memory_type, data["details"])
        now = utc_now_iso()
        return cls(
            id=data.get("id") or new_memory_id(),
            type=memory_type,
            vendor=data["vendor"],
            details=details,
            confidence=float(data["confidence"]),
            usage_count=data.get("usage_count", 0),
            created_at=data.get("created_at") or now,
            last_used_at=data.get("last_used_at"),
            last_updated_at=data.get("last_updated_at") or now,
            last_decayed_at=data.get("last_decayed_at"),
            is_active=data.get("is_active", True),
        )


@dataclass
class MemoryQuery:
    """Filter for MemoryStore.query. None means "don't filter"."""

    vendor: Optional[str] = None
    type: Optional[MemoryType] = None
    field_name: Optional[str] = None
    pattern: Optional[str] = None
    min_confidence: Optional[float] = None
    limit: Optional[int] = None
    active_only: bool = True
