"""
Canonical invoice object (SSOT).

An Invoice is immutable as received: corrections are applied to a deep
copy (the "normalized invoice"), never to the original.

Known extracted_data keys:
- invoice_number, date, service_date, amount, currency, vat_amount,
  vat_included, po_number, line_items
Any other key is carried through untouched.
"""

import copy
import json
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, Optional

# Fields whose correction has direct financial impact
FINANCIAL_FIELDS = frozenset({"amount", "vat_amount", "total_price"})

LINE_ITEMS_FIELD = "line_items"


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses/enums nested in a value into JSON-safe structures."""
    if is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return {k: to_jsonable(v) for k, v in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def comparable_value(value: Any) -> Any:
    """
    JSON-safe form of a value for equality checks.

    Integers become floats so 1200 and 1200.0 compare equal; booleans are
    left alone so True never equals 1.
    """
    value = to_jsonable(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, dict):
        return {k: comparable_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [comparable_value(v) for v in value]
    return value


def value_key(value: Any) -> str:
    """Canonical text of a value; equal keys mean identical values."""
    return json.dumps(comparable_value(value), sort_keys=True, default=str)


@dataclass
class LineItem:
    """Individual line item from an invoice."""

    description: str
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    sku: Optional[str] = None
    vat_rate: Optional[float] = None  # As fraction, e.g. 0.19

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "sku": self.sku,
            "vat_rate": self.vat_rate,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            description=data["description"],
            quantity=data.get("quantity"),
            unit_price=data.get("unit_price"),
            total_price=data.get("total_price"),
            sku=data.get("sku"),
            vat_rate=data.get("vat_rate"),
        )


def coerce_line_items(items: list) -> list[LineItem]:
    """Accept a mix of LineItem objects and dicts, return LineItem objects."""
    return [item if isinstance(item, LineItem) else LineItem.from_dict(item) for item in items]


@dataclass
class InvoiceMetadata:
    """Where the invoice came from."""

    source: str = ""
    extracted_at: str = ""  # ISO timestamp
    processing_id: str = ""


@dataclass
class Invoice:
    """
    CANONICAL invoice as received from extraction.

    extracted_data is open-ended on purpose: memories address fields by
    name, and vendors routinely carry fields nobody anticipated.
    """

    id: str
    vendor: str
    raw_text: str
    extracted_data: dict[str, Any] = field(default_factory=dict)
    metadata: InvoiceMetadata = field(default_factory=InvoiceMetadata)

    def get_field(self, name: str) -> Any:
        """Current value of an extracted field (None if absent)."""
        return self.extracted_data.get(name)

    @property
    def line_items(self) -> list[LineItem]:
        return coerce_line_items(self.extracted_data.get(LINE_ITEMS_FIELD) or [])

    def with_corrections(self, corrections: list) -> "Invoice":
        """
        Build the normalized invoice.

        Deep-copies this invoice and overwrites each corrected field with its
        proposed value. Later corrections for the same field win.
        """
        normalized = copy.deepcopy(self)
        for correction in corrections:
            value = copy.deepcopy(correction.proposed_value)
            if correction.field == LINE_ITEMS_FIELD and isinstance(value, list):
                value = coerce_line_items(value)
            normalized.extracted_data[correction.field] = value
        return normalized

    def to_dict(self) -> dict:
        data = {k: to_jsonable(v) for k, v in self.extracted_data.items()}
        return {
            "id": self.id,
            "vendor": self.vendor,
            "raw_text": self.raw_text,
            "extracted_data": data,
            "metadata": {
                "source": self.metadata.source,
                "extracted_at": self.metadata.extracted_at,
                "processing_id": self.metadata.processing_id,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        """Create from dictionary. Raises KeyError/ValueError on malformed input."""
        extracted = dict(data.get("extracted_data") or {})
        if extracted.get(LINE_ITEMS_FIELD) is not None:
            if not isinstance(extracted[LINE_ITEMS_FIELD], list):
                raise ValueError("extracted_data.line_items must be a list")
            extracted[LINE_ITEMS_FIELD] = coerce_line_items(extracted[LINE_ITEMS_FIELD])

        meta = data.get("metadata") or {}
        return cls(
            id=str(data["id"]),
            vendor=data["vendor"],
            raw_text=data.get("raw_text", ""),
            extracted_data=extracted,
            metadata=InvoiceMetadata(
                source=meta.get("source", ""),
                extracted_at=meta.get("extracted_at", ""),
                processing_id=meta.get("processing_id", ""),
            ),
        )
