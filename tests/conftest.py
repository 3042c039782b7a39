"""Test fixtures and utilities."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from invoice_memory.config import MemoryConfig
from invoice_memory.intelligence import InvoiceProcessor
from invoice_memory.invoices import StaticInvoiceLookup
from invoice_memory.memory import MemoryManager
from invoice_memory.memory_store import MemoryStore
from invoice_memory.schemas import Invoice, InvoiceMetadata, LineItem

# Raw text of a German supplier invoice with a service-date label
SAMPLE_RAW_TEXT_SUPPLIER = """
Supplier GmbH
Industriestraße 7
80331 München

Rechnung INV-A-001
Rechnungsdatum: 2024-01-15
Leistungsdatum: 2024-01-10

Widget A              10 x 25,00 EUR     250,00 EUR
Widget B               5 x 50,00 EUR     250,00 EUR

Nettobetrag:                              500,00 EUR
MwSt. 19%:                                 95,00 EUR
Gesamtbetrag:                             595,00 EUR
"""

# Raw text of an invoice with VAT-inclusive prices
SAMPLE_RAW_TEXT_PARTS = """
Parts AG
Rechnung PA-2024-0042
Datum: 2024-02-01

Bremsscheiben        2 x 119,00         238,00
Prices incl. VAT
MwSt. inkl. 19%

Gesamt: 238,00 EUR
"""

# Raw text of a freight forwarder invoice
SAMPLE_RAW_TEXT_FREIGHT = """
Freight & Co
Invoice FC-778
Date: 2024-03-05

Seefracht / Shipping    1    1000.00
Freight Services        1     200.00

Total: 1200.00
"""


class FixedClock:
    """Settable clock for decay tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_memory.db"


@pytest.fixture
def store(temp_db) -> MemoryStore:
    """Fresh memory store."""
    return MemoryStore(temp_db)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def lookup() -> StaticInvoiceLookup:
    """Invoice lookup with the sample invoices registered."""
    return StaticInvoiceLookup(
        {
            "INV-A-001": "Supplier GmbH",
            "PA-2024-0042": "Parts AG",
            "FC-778": "Freight & Co",
        }
    )


@pytest.fixture
def manager(store, lookup) -> MemoryManager:
    """Memory manager on the fresh store, real clock."""
    return MemoryManager(store, MemoryConfig(), invoice_lookup=lookup)


@pytest.fixture
def processor(manager) -> InvoiceProcessor:
    return InvoiceProcessor(manager)


@pytest.fixture
def supplier_invoice() -> Invoice:
    """Invoice whose service date sits behind the 'Leistungsdatum' label."""
    return Invoice(
        id="INV-A-001",
        vendor="Supplier GmbH",
        raw_text=SAMPLE_RAW_TEXT_SUPPLIER,
        extracted_data={
            "invoice_number": "INV-A-001",
            "date": "2024-01-15",
            "amount": 595.0,
            "vat_amount": 95.0,
            "currency": "EUR",
            "po_number": "PO-4711",
            "vat_included": False,
            "line_items": [
                LineItem(description="Widget A", quantity=10, unit_price=25.0, total_price=250.0, sku="WA"),
                LineItem(description="Widget B", quantity=5, unit_price=50.0, total_price=250.0, sku="WB"),
            ],
        },
        metadata=InvoiceMetadata(source="ocr", extracted_at="2024-01-16T08:00:00Z", processing_id="p-1"),
    )


@pytest.fixture
def parts_invoice() -> Invoice:
    """Invoice with VAT-inclusive prices and unknown vat_included flag."""
    return Invoice(
        id="PA-2024-0042",
        vendor="Parts AG",
        raw_text=SAMPLE_RAW_TEXT_PARTS,
        extracted_data={
            "invoice_number": "PA-2024-0042",
            "date": "2024-02-01",
            "service_date": "2024-02-01",
            "amount": 238.0,
            "vat_amount": 38.0,
            "currency": "EUR",
            "po_number": "PO-1",
            "line_items": [
                LineItem(description="Bremsscheiben", quantity=2, unit_price=119.0, total_price=238.0, sku="BS"),
            ],
        },
    )


@pytest.fixture
def freight_invoice() -> Invoice:
    """Invoice without currency and with an unmapped freight line."""
    return Invoice(
        id="FC-778",
        vendor="Freight & Co",
        raw_text=SAMPLE_RAW_TEXT_FREIGHT,
        extracted_data={
            "invoice_number": "FC-778",
            "date": "2024-03-05",
            "service_date": "2024-03-05",
            "amount": 1200.0,
            "vat_amount": 0.0,
            "po_number": "PO-9",
            "vat_included": False,
            "line_items": [
                LineItem(description="Seefracht / Shipping", quantity=1, total_price=1000.0, sku="SEA"),
                LineItem(description="Freight Services", quantity=1, total_price=200.0),
            ],
        },
    )


@pytest.fixture
def sample_invoice_dict() -> dict:
    """Invoice as received over the wire."""
    return {
        "id": "INV-A-001",
        "vendor": "Supplier GmbH",
        "raw_text": SAMPLE_RAW_TEXT_SUPPLIER,
        "extracted_data": {
            "invoice_number": "INV-A-001",
            "date": "2024-01-15",
            "amount": 595.0,
            "vat_amount": 95.0,
            "currency": "EUR",
            "po_number": "PO-4711",
            "vat_included": False,
            "line_items": [
                {"description": "Widget A", "quantity": 10, "unit_price": 25.0, "total_price": 250.0, "sku": "WA"},
            ],
        },
        "metadata": {"source": "ocr", "extracted_at": "2024-01-16T08:00:00Z", "processing_id": "p-1"},
    }
