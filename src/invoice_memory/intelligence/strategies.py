"""
Vendor action strategies.

A vendor memory's action is dispatched on its kind (field_mapping,
inference, computation) and then on its strategy name. Every strategy
returns a candidate value for the action's target field, or None when it
has nothing to propose.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import replace
from typing import Any, Optional

from ..schemas import (
    SERVICE_DATE_LABEL,
    ActionKind,
    Invoice,
    Strategy,
    VendorAction,
    VendorRule,
)

logger = logging.getLogger(__name__)

# "Leistungsdatum: 2024-01-10"
SERVICE_DATE_PATTERN = re.compile(re.escape(SERVICE_DATE_LABEL) + r"\s*:?\s*(\d{4}-\d{2}-\d{2})")

# "PO: 12345", "PO 4711"
PO_PATTERN = re.compile(r"PO[:\s]*(\w+)", re.IGNORECASE)

# Checked in order, first hit wins
CURRENCY_CUES = [
    ("EUR", re.compile(r"€|EUR|euro", re.IGNORECASE)),
    ("USD", re.compile(r"\$|USD|dollar", re.IGNORECASE)),
    ("GBP", re.compile(r"£|GBP|pound", re.IGNORECASE)),
]

VAT_INCLUDED_PATTERN = re.compile(r"MwSt\.\s*inkl\.|Prices\s*incl\.\s*VAT", re.IGNORECASE)

DEFAULT_VAT_RATE = 0.19

StrategyFn = Callable[[Invoice, VendorRule], Any]


def trigger_matches(invoice: Invoice, rule: VendorRule) -> bool:
    """Raw text contains the trigger literally, or the trigger is the vendor name."""
    return rule.trigger_signal in invoice.raw_text or rule.trigger_signal == invoice.vendor


# Field mapping


def _extract_service_date(invoice: Invoice, rule: VendorRule) -> Optional[str]:
    match = SERVICE_DATE_PATTERN.search(invoice.raw_text)
    return match.group(1) if match else None


def _map_sku(invoice: Invoice, rule: VendorRule) -> Optional[list]:
    """Set the action's SKU on unmapped line items mentioning the trigger."""
    sku = rule.action.value
    if not sku:
        return None

    changed = False
    items = []
    for item in invoice.line_items:
        if not item.sku and rule.trigger_signal in item.description:
            item = replace(item, sku=sku)
            changed = True
        items.append(item)

    return items if changed else None


def _map_field(invoice: Invoice, rule: VendorRule) -> Any:
    action = rule.action

    if action.strategy == Strategy.EXTRACT_FROM_TEXT.value and rule.trigger_signal == SERVICE_DATE_LABEL:
        return _extract_service_date(invoice, rule)

    if action.strategy == Strategy.SKU_MAPPING.value:
        return _map_sku(invoice, rule)

    if action.source_field and invoice.get_field(action.source_field):
        return invoice.get_field(action.source_field)

    return action.value


# Inference


def _po_from_items(invoice: Invoice, rule: VendorRule) -> Optional[str]:
    if invoice.get_field("po_number"):
        return None
    for item in invoice.line_items:
        match = PO_PATTERN.search(item.description or "")
        if match:
            return match.group(1)
    return None


def _currency_from_text(invoice: Invoice, rule: VendorRule) -> Optional[str]:
    for currency, pattern in CURRENCY_CUES:
        if pattern.search(invoice.raw_text):
            return currency
    return None


def _vendor_default_currency(invoice: Invoice, rule: VendorRule) -> Any:
    return rule.action.value


INFERENCE_STRATEGIES: dict[str, StrategyFn] = {
    Strategy.PO_FROM_ITEMS.value: _po_from_items,
    Strategy.CURRENCY_FROM_TEXT.value: _currency_from_text,
    Strategy.VENDOR_DEFAULT_CURRENCY.value: _vendor_default_currency,
}


# Computation


def _detect_vat_included(invoice: Invoice, rule: VendorRule) -> Optional[bool]:
    return True if VAT_INCLUDED_PATTERN.search(invoice.raw_text) else None


def _vat_rate(invoice: Invoice, action: VendorAction) -> float:
    if isinstance(action.value, (int, float)) and not isinstance(action.value, bool):
        return float(action.value)
    for item in invoice.line_items:
        if item.vat_rate is not None:
            return item.vat_rate
    return DEFAULT_VAT_RATE


def _net_from_gross(invoice: Invoice, rule: VendorRule) -> Optional[float]:
    """Net amount of a VAT-inclusive gross amount."""
    amount = invoice.get_field("amount")
    if invoice.get_field("vat_included") is not True or not amount:
        return None
    rate = _vat_rate(invoice, rule.action)
    return round(float(amount) / (1 + rate), 2)


def _total_from_items(invoice: Invoice, rule: VendorRule) -> Optional[float]:
    items = invoice.line_items
    if not items:
        return None
    return round(sum(item.total_price or 0 for item in items), 2)


COMPUTATION_STRATEGIES: dict[str, StrategyFn] = {
    Strategy.VAT_INCLUDED_ADJUSTMENT.value: _net_from_gross,
    Strategy.TOTAL_FROM_ITEMS.value: _total_from_items,
}


def _compute(invoice: Invoice, rule: VendorRule) -> Any:
    if rule.action.strategy == Strategy.VAT_INCLUDED_DETECTION.value:
        return _detect_vat_included(invoice, rule)
    strategy = COMPUTATION_STRATEGIES.get(rule.action.strategy or "")
    return strategy(invoice, rule) if strategy else None


def _infer(invoice: Invoice, rule: VendorRule) -> Any:
    strategy = INFERENCE_STRATEGIES.get(rule.action.strategy or "")
    return strategy(invoice, rule) if strategy else None


ACTION_HANDLERS: dict[ActionKind, StrategyFn] = {
    ActionKind.FIELD_MAPPING: _map_field,
    ActionKind.INFERENCE: _infer,
    ActionKind.COMPUTATION: _compute,
}


def propose_value(invoice: Invoice, rule: VendorRule) -> Any:
    """
    Candidate value of a vendor rule for an invoice.

    Returns None if the trigger does not match or the strategy has nothing
    to propose. Unknown strategies propose nothing.
    """
    if not trigger_matches(invoice, rule):
        return None

    handler = ACTION_HANDLERS.get(rule.action.kind)
    if handler is None:
        return None

    value = handler(invoice, rule)
    if value is None:
        logger.debug(
            f"Strategy {rule.action.strategy or rule.action.kind.value} proposed nothing "
            f"for {rule.action.target_field}"
        )
    return value
