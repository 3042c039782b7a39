"""
Migration 001: Memory event history.

Append-only log of confidence changes (create, reinforce, weaken, decay,
deactivate) so every memory's trajectory can be audited.
"""

import sqlite3

VERSION = 1
NAME = "memory_events"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create memory_events table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS memory_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            memory_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            confidence_before REAL,
            confidence_after REAL NOT NULL,
            details TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (memory_id) REFERENCES memories(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_memory_events_memory_id ON memory_events(memory_id)"
    )
