"""
Invoice identity lookup.

Human feedback only carries an invoice id; the vendor that owns the
invoice has to be resolved from wherever invoices are kept. The core
depends on the InvoiceLookup interface only.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..memory_store import MemoryStore
from ..schemas import Invoice

logger = logging.getLogger(__name__)


class InvoiceLookupError(Exception):
    """Base exception for invoice lookup errors."""

    pass


class InvoiceNotFoundError(InvoiceLookupError):
    """The invoice id is not known to the invoice store."""

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Unknown invoice: {invoice_id}")


class InvoiceLookupConnectionError(InvoiceLookupError):
    """Failed to reach the invoice store."""

    pass


class InvoiceLookup(ABC):
    """Resolves the vendor that owns an invoice."""

    @abstractmethod
    def resolve_vendor(self, invoice_id: str) -> str:
        """
        Return the vendor of an invoice.

        Raises:
            InvoiceNotFoundError: If the invoice is unknown
            InvoiceLookupError: If the lookup itself failed
        """


class StaticInvoiceLookup(InvoiceLookup):
    """In-memory lookup, mainly for tests and scripted runs."""

    def __init__(self, vendors: Optional[dict[str, str]] = None):
        self._vendors: dict[str, str] = dict(vendors or {})

    def register(self, invoice: Invoice) -> None:
        self._vendors[invoice.id] = invoice.vendor

    def resolve_vendor(self, invoice_id: str) -> str:
        try:
            return self._vendors[invoice_id]
        except KeyError:
            raise InvoiceNotFoundError(invoice_id) from None


class RegistryInvoiceLookup(InvoiceLookup):
    """Lookup backed by the memory store's invoice registry."""

    def __init__(self, store: MemoryStore):
        self.store = store

    def resolve_vendor(self, invoice_id: str) -> str:
        record = self.store.get_registered_invoice(invoice_id)
        if record is None:
            raise InvoiceNotFoundError(invoice_id)
        return record.vendor
