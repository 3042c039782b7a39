"""
Migration 003: Invoice registry.

Maps processed invoice ids to their vendor and last decision. Written by
callers after processing; read when feedback needs the invoice's vendor.
"""

import sqlite3

VERSION = 3
NAME = "invoice_registry"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create invoice_registry table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS invoice_registry (
            invoice_id TEXT PRIMARY KEY,
            vendor TEXT NOT NULL,
            decision TEXT,
            confidence REAL,
            requires_review BOOLEAN,
            processed_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_invoice_registry_vendor ON invoice_registry(vendor)"
    )
