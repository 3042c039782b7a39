"""
Processing result, corrections and audit trail.

The audit trail is an explainability contract: every processed invoice
carries exactly four entries, in order: recall, apply, decide, learn.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .invoice import Invoice, to_jsonable


class AuditStep(str, Enum):
    """Pipeline stages, in execution order."""

    RECALL = "recall"
    APPLY = "apply"
    DECIDE = "decide"
    LEARN = "learn"


class MemoryUpdateKind(str, Enum):
    CREATE = "create"
    REINFORCE = "reinforce"
    WEAKEN = "weaken"
    DECAY = "decay"


class DecisionOutcome(str, Enum):
    """
    Outcome of the DECIDE stage.

    AUTO_ACCEPT: nothing to change, high confidence
    AUTO_CORRECT: reliable corrections applied without review
    ESCALATE: route to human review
    """

    AUTO_ACCEPT = "AUTO_ACCEPT"
    AUTO_CORRECT = "AUTO_CORRECT"
    ESCALATE = "ESCALATE"

    @property
    def requires_review(self) -> bool:
        return self is DecisionOutcome.ESCALATE


@dataclass
class Correction:
    """A single proposed field change with provenance."""

    field: str
    original_value: Any
    proposed_value: Any
    confidence: float
    memory_source: str  # Originating memory id
    reasoning: str

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "original_value": to_jsonable(self.original_value),
            "proposed_value": to_jsonable(self.proposed_value),
            "confidence": self.confidence,
            "memory_source": self.memory_source,
            "reasoning": self.reasoning,
        }


@dataclass
class MemoryUpdate:
    """A memory mutation performed while processing."""

    kind: MemoryUpdateKind
    details: str
    memory_id: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"kind": self.kind.value, "details": self.details}
        if self.memory_id:
            d["memory_id"] = self.memory_id
        return d


@dataclass
class AuditEntry:
    """One stage of the audit trail."""

    step: AuditStep
    timestamp: str  # ISO format
    details: str
    confidence: Optional[float] = None
    memory_references: Optional[list[str]] = None

    def to_dict(self) -> dict:
        d = {
            "step": self.step.value,
            "timestamp": self.timestamp,
            "details": self.details,
        }
        if self.confidence is not None:
            d["confidence"] = round(self.confidence, 4)
        if self.memory_references is not None:
            d["memory_references"] = list(self.memory_references)
        return d


@dataclass
class Decision:
    """Output of the pure decision function."""

    outcome: DecisionOutcome
    reasoning: str
    risk_factors: list[str] = field(default_factory=list)

    @property
    def requires_review(self) -> bool:
        return self.outcome.requires_review


@dataclass
class ProcessingResult:
    """Explainable result of processing one invoice."""

    normalized_invoice: Invoice
    proposed_corrections: list[Correction]
    requires_human_review: bool
    reasoning: str
    confidence_score: float
    memory_updates: list[MemoryUpdate]
    audit_trail: list[AuditEntry]
    decision: DecisionOutcome = DecisionOutcome.ESCALATE
    risk_factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "normalized_invoice": self.normalized_invoice.to_dict(),
            "proposed_corrections": [c.to_dict() for c in self.proposed_corrections],
            "requires_human_review": self.requires_human_review,
            "reasoning": self.reasoning,
            "confidence_score": round(self.confidence_score, 4),
            "decision": self.decision.value,
            "risk_factors": list(self.risk_factors),
            "memory_updates": [u.to_dict() for u in self.memory_updates],
            "audit_trail": [a.to_dict() for a in self.audit_trail],
        }
