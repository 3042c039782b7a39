"""
Migration 002: Decay bookkeeping.

Adds last_decayed_at so lazily applied decay does not compound when an
idle memory is recalled repeatedly.
"""

import sqlite3

VERSION = 2
NAME = "decay_bookkeeping"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add last_decayed_at column to memories."""
    cursor = conn.execute("PRAGMA table_info(memories)")
    columns = [row[1] for row in cursor.fetchall()]

    if "last_decayed_at" not in columns:
        conn.execute("ALTER TABLE memories ADD COLUMN last_decayed_at TEXT")
