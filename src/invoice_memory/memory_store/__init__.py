"""
Memory Store (SQLite-based).

Durable keyed storage for Memory records:
- save (upsert), keyed get, filtered query
- confidence updates, usage touches, atomic read-modify-write
- confidence history and invoice registry

Memories are never deleted; deactivated memories are excluded from queries.
"""

from .sqlite_store import (
    InvoiceRegistryRecord,
    MemoryEvent,
    MemoryStore,
)

__all__ = [
    "InvoiceRegistryRecord",
    "MemoryEvent",
    "MemoryStore",
]
