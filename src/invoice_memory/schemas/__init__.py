"""
Schemas for the invoice memory pipeline.

- Invoice: canonical received invoice (immutable as received)
- Memory: scored heuristic rule (vendor / correction / resolution)
- ProcessingResult: explainable per-invoice outcome with audit trail
- HumanFeedback: reviewer corrections feeding the learning loop
"""

from .feedback import FieldCorrection, HumanFeedback
from .invoice import (
    FINANCIAL_FIELDS,
    LINE_ITEMS_FIELD,
    Invoice,
    InvoiceMetadata,
    LineItem,
    comparable_value,
    to_jsonable,
    value_key,
)
from .memory import (
    HUMAN_CORRECTION_PATTERN,
    SERVICE_DATE_LABEL,
    ActionKind,
    CorrectionRule,
    Memory,
    MemoryQuery,
    MemoryType,
    ResolutionOutcome,
    ResolutionRecord,
    Strategy,
    VendorAction,
    VendorRule,
)
from .results import (
    AuditEntry,
    AuditStep,
    Correction,
    Decision,
    DecisionOutcome,
    MemoryUpdate,
    MemoryUpdateKind,
    ProcessingResult,
)

__all__ = [
    "ActionKind",
    "AuditEntry",
    "AuditStep",
    "Correction",
    "CorrectionRule",
    "Decision",
    "DecisionOutcome",
    "FINANCIAL_FIELDS",
    "FieldCorrection",
    "HUMAN_CORRECTION_PATTERN",
    "HumanFeedback",
    "Invoice",
    "InvoiceMetadata",
    "LINE_ITEMS_FIELD",
    "LineItem",
    "Memory",
    "MemoryQuery",
    "MemoryType",
    "MemoryUpdate",
    "MemoryUpdateKind",
    "ProcessingResult",
    "ResolutionOutcome",
    "ResolutionRecord",
    "SERVICE_DATE_LABEL",
    "Strategy",
    "VendorAction",
    "VendorRule",
    "comparable_value",
    "to_jsonable",
    "value_key",
]
