"""
Invoice intelligence.

InvoiceProcessor runs RECALL -> APPLY -> DECIDE -> LEARN per invoice;
strategies holds the vendor action tables.
"""

from .processor import (
    InvoiceProcessor,
    categorize_scenario,
    detect_field_issues,
    matches_pattern,
)
from .strategies import propose_value, trigger_matches

__all__ = [
    "InvoiceProcessor",
    "categorize_scenario",
    "detect_field_issues",
    "matches_pattern",
    "propose_value",
    "trigger_matches",
]
