"""
SQLite-based memory store implementation.

Tables:
- memories: All memory kinds; variant payload stored as JSON
- memory_events: Confidence history per memory (migration 001)
- invoice_registry: Processed invoice -> vendor (migration 003)
"""

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..config import MemoryConfig
from ..confidence import clamp_confidence
from ..schemas import Memory, MemoryQuery, MemoryType
from ..schemas.memory import details_from_dict
from ..schemas.timestamps import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class MemoryEvent:
    """One confidence change of a memory."""

    id: int
    memory_id: str
    kind: str
    confidence_before: float | None
    confidence_after: float
    details: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MemoryEvent":
        """Create from database row."""
        return cls(
            id=row["id"],
            memory_id=row["memory_id"],
            kind=row["kind"],
            confidence_before=row["confidence_before"],
            confidence_after=row["confidence_after"],
            details=row["details"],
            created_at=row["created_at"],
        )


@dataclass
class InvoiceRegistryRecord:
    """Record of a processed invoice."""

    invoice_id: str
    vendor: str
    decision: str | None
    confidence: float | None
    requires_review: bool | None
    processed_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "InvoiceRegistryRecord":
        """Create from database row."""
        return cls(
            invoice_id=row["invoice_id"],
            vendor=row["vendor"],
            decision=row["decision"],
            confidence=row["confidence"],
            requires_review=(
                bool(row["requires_review"]) if row["requires_review"] is not None else None
            ),
            processed_at=row["processed_at"],
        )


def _memory_from_row(row: sqlite3.Row) -> Memory:
    memory_type = MemoryType(row["type"])
    details = details_from_dict(memory_type, json.loads(row["details_json"]))
    return Memory(
        id=row["id"],
        type=memory_type,
        vendor=row["vendor"],
        details=details,
        confidence=row["confidence"],
        usage_count=row["usage_count"],
        created_at=row["created_at"],
        last_used_at=row["last_used_at"],
        last_updated_at=row["last_updated_at"],
        last_decayed_at=row["last_decayed_at"] if "last_decayed_at" in row.keys() else None,
        is_active=bool(row["is_active"]),
    )


class MemoryStore:
    """
    SQLite-based memory store.

    Provides:
    - save (upsert by id) and keyed get
    - filtered query, ordered by confidence desc then usage desc
    - confidence updates and usage touches
    - atomic read-modify-write via update_memory
    - confidence event history
    - invoice registry (invoice id -> vendor)

    Each call opens its own connection; update_memory holds a write lock
    (BEGIN IMMEDIATE) for the whole read-modify-write. Confidence is clamped
    to the configured bounds on every write.
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        memory_config: Optional[MemoryConfig] = None,
    ):
        """
        Initialize memory store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            memory_config: Confidence bounds applied on write (defaults if omitted)
        """
        self.db_path = Path(db_path)
        self.memory_config = memory_config or MemoryConfig()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    vendor TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    field_name TEXT,  -- correction memories only
                    pattern TEXT,  -- vendor pattern label or correction original pattern
                    details_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_used_at TEXT,
                    last_updated_at TEXT NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT 1
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_vendor ON memories(vendor)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memories_confidence ON memories(confidence)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memories_field_name ON memories(field_name)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Memory methods

    def _write_memory(self, conn: sqlite3.Connection, memory: Memory) -> None:
        memory.confidence = clamp_confidence(memory.confidence, self.memory_config)
        conn.execute(
            """
            INSERT INTO memories
            (id, type, vendor, confidence, usage_count, field_name, pattern, details_json,
             created_at, last_used_at, last_updated_at, last_decayed_at, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                type = excluded.type,
                vendor = excluded.vendor,
                confidence = excluded.confidence,
                usage_count = excluded.usage_count,
                field_name = excluded.field_name,
                pattern = excluded.pattern,
                details_json = excluded.details_json,
                created_at = excluded.created_at,
                last_used_at = excluded.last_used_at,
                last_updated_at = excluded.last_updated_at,
                last_decayed_at = excluded.last_decayed_at,
                is_active = excluded.is_active
        """,
            (
                memory.id,
                memory.type.value,
                memory.vendor,
                memory.confidence,
                memory.usage_count,
                memory.field_name,
                memory.pattern,
                json.dumps(memory.details.to_dict()),
                memory.created_at,
                memory.last_used_at,
                memory.last_updated_at,
                memory.last_decayed_at,
                1 if memory.is_active else 0,
            ),
        )

    def _record_event(
        self,
        conn: sqlite3.Connection,
        memory_id: str,
        kind: str,
        before: float | None,
        after: float,
        details: str | None = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO memory_events
            (memory_id, kind, confidence_before, confidence_after, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (memory_id, kind, before, after, details, utc_now_iso()),
        )

    def save(self, memory: Memory, event: str | None = None) -> None:
        """
        Insert or update a memory (upsert by id).

        Args:
            memory: Memory to persist
            event: Optional event kind to record in the history (e.g. "create")
        """
        self.save_many([memory], event=event)

    def save_many(self, memories: list[Memory], event: str | None = None) -> None:
        """
        Insert or update several memories in one transaction.

        Either every memory is written or, on error, none is.
        """
        with self._transaction(immediate=True) as conn:
            for memory in memories:
                previous = conn.execute(
                    "SELECT confidence FROM memories WHERE id = ?", (memory.id,)
                ).fetchone()
                self._write_memory(conn, memory)
                if event:
                    before = previous["confidence"] if previous else None
                    self._record_event(conn, memory.id, event, before, memory.confidence)

    def get(self, memory_id: str) -> Memory | None:
        """Get a memory by id (active or not)."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
            return _memory_from_row(row) if row else None

    def query(self, query: Optional[MemoryQuery] = None) -> list[Memory]:
        """
        Query memories.

        Results are ordered by confidence (desc), then usage count (desc).
        Only active memories are returned unless query.active_only is False.
        """
        query = query or MemoryQuery()
        sql = "SELECT * FROM memories WHERE 1 = 1"
        params: list[Any] = []

        if query.active_only:
            sql += " AND is_active = 1"
        if query.vendor is not None:
            sql += " AND vendor = ?"
            params.append(query.vendor)
        if query.type is not None:
            sql += " AND type = ?"
            params.append(MemoryType(query.type).value)
        if query.field_name is not None:
            sql += " AND field_name = ?"
            params.append(query.field_name)
        if query.pattern is not None:
            sql += " AND pattern LIKE ?"
            params.append(f"%{query.pattern}%")
        if query.min_confidence is not None:
            sql += " AND confidence >= ?"
            params.append(query.min_confidence)

        sql += " ORDER BY confidence DESC, usage_count DESC, created_at ASC"

        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit)

        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [_memory_from_row(row) for row in rows]

    def update_confidence(self, memory_id: str, confidence: float, event: str = "update") -> None:
        """Set a memory's confidence (clamped to the configured bounds)."""
        confidence = clamp_confidence(confidence, self.memory_config)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT confidence FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
            if not row:
                return
            conn.execute(
                "UPDATE memories SET confidence = ?, last_updated_at = ? WHERE id = ?",
                (confidence, utc_now_iso(), memory_id),
            )
            self._record_event(conn, memory_id, event, row["confidence"], confidence)

    def touch_usage(self, memory_id: str, used_at: str | None = None) -> None:
        """Increment usage count and set last-used timestamp."""
        now = used_at or utc_now_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE memories
                SET usage_count = usage_count + 1, last_used_at = ?, last_updated_at = ?
                WHERE id = ?
            """,
                (now, now, memory_id),
            )

    def update_memory(
        self,
        memory_id: str,
        mutator: Callable[[Memory], Optional[str]],
    ) -> Memory | None:
        """
        Atomically read, mutate and write a memory.

        The mutator changes the memory in place and returns the event kind
        to record (or None to skip writing). The whole operation runs under
        a write lock, so concurrent callers cannot lose updates.

        Returns:
            The memory as written, or None if the id is unknown or the
            mutator declined to write.
        """
        with self._transaction(immediate=True) as conn:
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
            if not row:
                return None

            memory = _memory_from_row(row)
            before = memory.confidence
            event = mutator(memory)
            if event is None:
                return None

            memory.last_updated_at = utc_now_iso()
            self._write_memory(conn, memory)
            self._record_event(conn, memory.id, event, before, memory.confidence)
            return memory

    def get_events(self, memory_id: str) -> list[MemoryEvent]:
        """Get the confidence history of a memory, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM memory_events WHERE memory_id = ? ORDER BY id",
                (memory_id,),
            ).fetchall()
            return [MemoryEvent.from_row(row) for row in rows]

    # Invoice registry methods

    def register_invoice(
        self,
        invoice_id: str,
        vendor: str,
        decision: str | None = None,
        confidence: float | None = None,
        requires_review: bool | None = None,
    ) -> None:
        """Record (or refresh) which vendor a processed invoice belongs to."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO invoice_registry
                (invoice_id, vendor, decision, confidence, requires_review, processed_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (invoice_id, vendor, decision, confidence, requires_review, utc_now_iso()),
            )

    def get_registered_invoice(self, invoice_id: str) -> InvoiceRegistryRecord | None:
        """Get a registry record by invoice id."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM invoice_registry WHERE invoice_id = ?", (invoice_id,)
            ).fetchone()
            return InvoiceRegistryRecord.from_row(row) if row else None

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """
        Get memory statistics.

        Per-type counts and the average confidence cover active memories
        only; inactive memories are counted in memories_inactive.
        """
        with self._transaction() as conn:
            total = conn.execute("SELECT COUNT(*) AS count FROM memories").fetchone()
            active = conn.execute(
                "SELECT COUNT(*) AS count, AVG(confidence) AS avg_confidence "
                "FROM memories WHERE is_active = 1"
            ).fetchone()
            by_type = conn.execute(
                "SELECT type, COUNT(*) AS count FROM memories WHERE is_active = 1 GROUP BY type"
            ).fetchall()
            decayed = conn.execute(
                "SELECT COUNT(*) AS count FROM memories "
                "WHERE is_active = 1 AND last_decayed_at IS NOT NULL"
            ).fetchone()
            invoices = conn.execute("SELECT COUNT(*) AS count FROM invoice_registry").fetchone()

            counts = {row["type"]: row["count"] for row in by_type}
            total_count = total["count"] if total else 0
            active_count = active["count"] if active else 0

            return {
                "memories_total": total_count,
                "memories_active": active_count,
                "memories_inactive": total_count - active_count,
                "vendor_memories": counts.get(MemoryType.VENDOR.value, 0),
                "correction_memories": counts.get(MemoryType.CORRECTION.value, 0),
                "resolution_memories": counts.get(MemoryType.RESOLUTION.value, 0),
                "decayed_memories": decayed["count"] if decayed else 0,
                "average_confidence": (
                    round(active["avg_confidence"], 4)
                    if active and active["avg_confidence"] is not None
                    else 0.0
                ),
                "invoices_registered": invoices["count"] if invoices else 0,
            }
