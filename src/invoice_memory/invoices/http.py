"""
HTTP invoice store client.

Resolves invoice vendors from a REST invoice store:
    GET {base_url}/api/invoices/{invoice_id}/  ->  {"id": ..., "vendor": ...}
"""

import logging
from typing import Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import InvoiceStoreConfig
from .lookup import (
    InvoiceLookup,
    InvoiceLookupConnectionError,
    InvoiceLookupError,
    InvoiceNotFoundError,
)

logger = logging.getLogger(__name__)


class InvoiceStoreAPIError(InvoiceLookupError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Invoice store API error {status_code}: {message}")


class HttpInvoiceLookup(InvoiceLookup):
    """
    InvoiceLookup against a REST invoice store.

    Features:
    - Token authentication
    - Automatic retry with backoff for transient failures
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize invoice store client.

        Args:
            base_url: Invoice store URL (e.g., "http://invoices.internal:8000")
            token: API token for authentication (optional)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Token {token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config: InvoiceStoreConfig) -> "HttpInvoiceLookup":
        if not config.base_url:
            raise ValueError("invoice_store.base_url is not configured")
        return cls(
            base_url=config.base_url,
            token=config.token,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )

    def resolve_vendor(self, invoice_id: str) -> str:
        url = f"{self.base_url}/api/invoices/{quote(invoice_id, safe='')}/"

        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise InvoiceLookupConnectionError(
                f"Failed to connect to invoice store at {self.base_url}: {e}"
            )
        except requests.exceptions.Timeout as e:
            raise InvoiceLookupConnectionError(f"Request to invoice store timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise InvoiceLookupError(f"Request failed: {e}")

        if response.status_code == 404:
            raise InvoiceNotFoundError(invoice_id)

        if not response.ok:
            raise InvoiceStoreAPIError(
                status_code=response.status_code,
                message=response.reason,
                response_body=response.text,
            )

        try:
            vendor = response.json().get("vendor")
        except ValueError as e:
            raise InvoiceLookupError(f"Invalid JSON from invoice store: {e}")

        if not vendor:
            raise InvoiceLookupError(f"Invoice {invoice_id} has no vendor")

        logger.debug(f"Resolved invoice {invoice_id} to vendor {vendor!r}")
        return vendor
