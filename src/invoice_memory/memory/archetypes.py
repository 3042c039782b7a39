"""
Feedback archetypes.

Some human corrections follow a recognizable pattern that generalizes
beyond the single invoice. Those are turned into specialized vendor
memories instead of a plain "set field X to Y" correction memory:

- service_date_from_label:  service_date fixed, reason mentions "Leistungsdatum"
- vat_included_from_keyword: vat_included fixed, reason mentions "MwSt. inkl."
- currency_equals_eur:       currency set to EUR
- sku_mapping_from_keyword:  line_items fixed, reason mentions "FREIGHT"
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from ..schemas import (
    LINE_ITEMS_FIELD,
    SERVICE_DATE_LABEL,
    ActionKind,
    FieldCorrection,
    Strategy,
    VendorAction,
)


def _reason_contains(correction: FieldCorrection, keyword: str) -> bool:
    return keyword in (correction.reason or "")


@dataclass(frozen=True)
class FeedbackArchetype:
    """A correction pattern and the vendor memory it produces."""

    name: str
    field: str
    matches: Callable[[FieldCorrection], bool]
    trigger_signal: Optional[str]  # None: use the vendor name as trigger
    action: VendorAction
    pattern: str
    confidence: float

    def applies_to(self, correction: FieldCorrection) -> bool:
        return correction.field == self.field and self.matches(correction)

    def trigger_for(self, vendor: str) -> str:
        return self.trigger_signal if self.trigger_signal is not None else vendor


ARCHETYPES: tuple[FeedbackArchetype, ...] = (
    FeedbackArchetype(
        name="service_date_from_label",
        field="service_date",
        matches=lambda c: _reason_contains(c, SERVICE_DATE_LABEL),
        trigger_signal=SERVICE_DATE_LABEL,
        action=VendorAction(
            kind=ActionKind.FIELD_MAPPING,
            target_field="service_date",
            strategy=Strategy.EXTRACT_FROM_TEXT.value,
        ),
        pattern="leistungsdatum_mapping",
        confidence=0.7,
    ),
    FeedbackArchetype(
        name="vat_included_from_keyword",
        field="vat_included",
        matches=lambda c: _reason_contains(c, "MwSt. inkl."),
        trigger_signal="MwSt. inkl.",
        action=VendorAction(
            kind=ActionKind.COMPUTATION,
            target_field="vat_included",
            value=True,
            strategy=Strategy.VAT_INCLUDED_DETECTION.value,
        ),
        pattern="vat_included_pattern",
        confidence=0.8,
    ),
    FeedbackArchetype(
        name="currency_equals_eur",
        field="currency",
        matches=lambda c: c.corrected_value == "EUR",
        trigger_signal=None,
        action=VendorAction(
            kind=ActionKind.INFERENCE,
            target_field="currency",
            value="EUR",
            strategy=Strategy.VENDOR_DEFAULT_CURRENCY.value,
        ),
        pattern="currency_inference",
        confidence=0.6,
    ),
    FeedbackArchetype(
        name="sku_mapping_from_keyword",
        field=LINE_ITEMS_FIELD,
        matches=lambda c: _reason_contains(c, "FREIGHT"),
        trigger_signal="Freight Services",
        action=VendorAction(
            kind=ActionKind.FIELD_MAPPING,
            target_field=LINE_ITEMS_FIELD,
            value="FREIGHT",
            strategy=Strategy.SKU_MAPPING.value,
        ),
        pattern="freight_sku_mapping",
        confidence=0.7,
    ),
)


def match_archetype(correction: FieldCorrection) -> Optional[FeedbackArchetype]:
    """First archetype matching a correction, or None for a generic correction."""
    for archetype in ARCHETYPES:
        if archetype.applies_to(correction):
            return archetype
    return None
