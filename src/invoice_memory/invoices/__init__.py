"""
Invoice identity lookup.

Provides:
- InvoiceLookup interface (invoice id -> vendor)
- HTTP-backed lookup against a REST invoice store
- Registry-backed lookup (invoices processed locally)
- Static lookup for tests and scripted runs
"""

from .http import HttpInvoiceLookup, InvoiceStoreAPIError
from .lookup import (
    InvoiceLookup,
    InvoiceLookupConnectionError,
    InvoiceLookupError,
    InvoiceNotFoundError,
    RegistryInvoiceLookup,
    StaticInvoiceLookup,
)

__all__ = [
    "HttpInvoiceLookup",
    "InvoiceLookup",
    "InvoiceLookupConnectionError",
    "InvoiceLookupError",
    "InvoiceNotFoundError",
    "InvoiceStoreAPIError",
    "RegistryInvoiceLookup",
    "StaticInvoiceLookup",
]
