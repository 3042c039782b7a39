"""Tests for the SQLite memory store."""

import sqlite3
import threading
from unittest.mock import patch

import pytest

from invoice_memory.memory_store import MemoryStore
from invoice_memory.memory_store.migrations import MigrationRunner, get_all_migrations
from invoice_memory.memory_store.migrations.runner import Migration
from invoice_memory.schemas import (
    ActionKind,
    CorrectionRule,
    Memory,
    MemoryQuery,
    MemoryType,
    ResolutionOutcome,
    ResolutionRecord,
    VendorAction,
    VendorRule,
)


def vendor_memory(vendor="Supplier GmbH", confidence=0.7, **kwargs) -> Memory:
    return Memory(
        type=MemoryType.VENDOR,
        vendor=vendor,
        details=VendorRule(
            trigger_signal="Leistungsdatum",
            action=VendorAction(
                kind=ActionKind.FIELD_MAPPING,
                target_field="service_date",
                strategy="extract_from_text",
            ),
            pattern="leistungsdatum_mapping",
        ),
        confidence=confidence,
        **kwargs,
    )


def correction_memory(vendor="Supplier GmbH", field="currency", value="EUR", confidence=0.7) -> Memory:
    return Memory(
        type=MemoryType.CORRECTION,
        vendor=vendor,
        details=CorrectionRule(
            field_name=field,
            original_pattern="human_correction",
            corrected_value=value,
            correction_reason="Reviewer fix",
        ),
        confidence=confidence,
    )


class TestMemoryStore:
    """Tests for store initialization."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        MemoryStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "memories" in table_names
            assert "memory_events" in table_names
            assert "invoice_registry" in table_names
            assert "migrations" in table_names
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        """Opening an existing store again keeps data and migrations."""
        store = MemoryStore(temp_db)
        memory = vendor_memory()
        store.save(memory)

        reopened = MemoryStore(temp_db)
        assert reopened.get(memory.id) is not None


class TestMemoryOperations:
    """Tests for memory CRUD operations."""

    def test_save_and_get_roundtrip(self, store):
        """Saved memories come back with their payload."""
        memory = vendor_memory(confidence=0.72)
        store.save(memory)

        loaded = store.get(memory.id)

        assert loaded == memory
        assert isinstance(loaded.details, VendorRule)
        assert loaded.details.action.kind == ActionKind.FIELD_MAPPING

    def test_get_unknown_returns_none(self, store):
        assert store.get("does-not-exist") is None

    def test_save_is_upsert(self, store):
        """Saving the same id twice updates the row."""
        memory = vendor_memory(confidence=0.5)
        store.save(memory)
        memory.confidence = 0.8
        store.save(memory)

        assert store.get(memory.id).confidence == 0.8
        assert len(store.query(MemoryQuery())) == 1

    def test_resolution_roundtrip(self, store):
        memory = Memory(
            type=MemoryType.RESOLUTION,
            vendor="Parts AG",
            details=ResolutionRecord(
                scenario="missing_po",
                outcome=ResolutionOutcome.APPROVED,
                system_action="Escalated",
                human_feedback="ok",
            ),
            confidence=0.6,
        )
        store.save(memory)

        loaded = store.get(memory.id)
        assert loaded.details.outcome == ResolutionOutcome.APPROVED
        assert loaded.field_name is None

    def test_query_filters(self, store):
        """Query filters by vendor, type, field and pattern."""
        store.save(vendor_memory())
        store.save(correction_memory(field="currency"))
        store.save(correction_memory(field="po_number", value="PO-1"))
        store.save(correction_memory(vendor="Other AG"))

        assert len(store.query(MemoryQuery(vendor="Supplier GmbH"))) == 3
        assert len(store.query(MemoryQuery(type=MemoryType.CORRECTION))) == 3

        by_field = store.query(
            MemoryQuery(vendor="Supplier GmbH", type=MemoryType.CORRECTION, field_name="currency")
        )
        assert [m.field_name for m in by_field] == ["currency"]

        by_pattern = store.query(MemoryQuery(pattern="leistungsdatum"))
        assert len(by_pattern) == 1
        assert by_pattern[0].type == MemoryType.VENDOR

    def test_query_ordering(self, store):
        """Results are ordered by confidence desc, then usage desc."""
        low = correction_memory(confidence=0.5)
        high = correction_memory(confidence=0.9)
        tie_used = correction_memory(confidence=0.7)
        tie_used.usage_count = 5
        tie_unused = correction_memory(confidence=0.7)
        for m in (low, tie_unused, high, tie_used):
            store.save(m)

        ids = [m.id for m in store.query(MemoryQuery())]
        assert ids == [high.id, tie_used.id, tie_unused.id, low.id]

    def test_query_min_confidence_and_limit(self, store):
        for confidence in (0.2, 0.4, 0.6, 0.8):
            store.save(correction_memory(confidence=confidence))

        results = store.query(MemoryQuery(min_confidence=0.4, limit=2))
        assert [m.confidence for m in results] == [0.8, 0.6]

    def test_query_excludes_inactive(self, store):
        """Inactive memories are only returned when asked for."""
        memory = correction_memory()
        memory.is_active = False
        store.save(memory)

        assert store.query(MemoryQuery()) == []
        assert len(store.query(MemoryQuery(active_only=False))) == 1
        assert store.get(memory.id) is not None

    def test_update_confidence(self, store):
        memory = correction_memory(confidence=0.5)
        store.save(memory, event="create")

        store.update_confidence(memory.id, 0.65, event="reinforce")

        assert store.get(memory.id).confidence == 0.65
        events = store.get_events(memory.id)
        assert [e.kind for e in events] == ["create", "reinforce"]
        assert events[1].confidence_before == 0.5
        assert events[1].confidence_after == 0.65

    def test_update_confidence_unknown_is_noop(self, store):
        store.update_confidence("missing", 0.9)
        assert store.get_events("missing") == []

    def test_update_confidence_is_clamped(self, store):
        memory = correction_memory(confidence=0.5)
        store.save(memory)

        store.update_confidence(memory.id, 1.4)
        assert store.get(memory.id).confidence == 0.95

        store.update_confidence(memory.id, 0.01)
        assert store.get(memory.id).confidence == 0.1

    def test_save_clamps_confidence(self, store):
        memory = vendor_memory(confidence=0.99)
        store.save(memory)
        assert store.get(memory.id).confidence == 0.95

    def test_save_many(self, store):
        memories = [vendor_memory(), correction_memory()]

        store.save_many(memories, event="create")

        assert len(store.query(MemoryQuery())) == 2
        assert [e.kind for e in store.get_events(memories[1].id)] == ["create"]

    def test_touch_usage(self, store):
        memory = correction_memory()
        store.save(memory)

        store.touch_usage(memory.id, used_at="2024-05-01T10:00:00Z")
        store.touch_usage(memory.id, used_at="2024-05-02T10:00:00Z")

        loaded = store.get(memory.id)
        assert loaded.usage_count == 2
        assert loaded.last_used_at == "2024-05-02T10:00:00Z"


class TestUpdateMemory:
    """Tests for atomic read-modify-write."""

    def test_mutator_changes_are_written(self, store):
        memory = correction_memory(confidence=0.5)
        store.save(memory)

        def bump(m):
            m.confidence = 0.6
            m.details.approval_count += 1
            return "reinforce"

        updated = store.update_memory(memory.id, bump)

        assert updated.confidence == 0.6
        loaded = store.get(memory.id)
        assert loaded.confidence == 0.6
        assert loaded.details.approval_count == 1
        assert store.get_events(memory.id)[-1].kind == "reinforce"

    def test_mutator_returning_none_skips_write(self, store):
        memory = correction_memory(confidence=0.5)
        store.save(memory)

        def decline(m):
            m.confidence = 0.9
            return None

        assert store.update_memory(memory.id, decline) is None
        assert store.get(memory.id).confidence == 0.5

    def test_unknown_id_returns_none(self, store):
        assert store.update_memory("missing", lambda m: "reinforce") is None

    def test_mutator_error_rolls_back(self, store):
        memory = correction_memory(confidence=0.5)
        store.save(memory)

        def explode(m):
            m.confidence = 0.9
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update_memory(memory.id, explode)
        assert store.get(memory.id).confidence == 0.5

    def test_concurrent_updates_are_not_lost(self, temp_db):
        """Increments from parallel store instances all land."""
        store = MemoryStore(temp_db)
        memory = correction_memory()
        store.save(memory)

        def increment(m):
            m.usage_count += 1
            return "touch"

        def worker():
            own = MemoryStore(temp_db)
            for _ in range(10):
                own.update_memory(memory.id, increment)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get(memory.id).usage_count == 40


class TestInvoiceRegistry:
    """Tests for the invoice registry."""

    def test_register_and_get(self, store):
        store.register_invoice("INV-1", "Supplier GmbH", "AUTO_ACCEPT", 0.9, False)

        record = store.get_registered_invoice("INV-1")

        assert record.vendor == "Supplier GmbH"
        assert record.decision == "AUTO_ACCEPT"
        assert record.requires_review is False

    def test_register_again_replaces(self, store):
        store.register_invoice("INV-1", "Supplier GmbH")
        store.register_invoice("INV-1", "Parts AG", "ESCALATE", 0.3, True)

        assert store.get_registered_invoice("INV-1").vendor == "Parts AG"

    def test_unknown_invoice(self, store):
        assert store.get_registered_invoice("nope") is None


class TestStats:
    """Tests for store statistics."""

    def test_empty_stats(self, store):
        stats = store.get_stats()
        assert stats["memories_total"] == 0
        assert stats["average_confidence"] == 0.0

    def test_stats_counts(self, store):
        store.save(vendor_memory(confidence=0.8))
        store.save(correction_memory(confidence=0.6))
        inactive = correction_memory(confidence=0.1)
        inactive.is_active = False
        store.save(inactive)
        store.register_invoice("INV-1", "Supplier GmbH")

        stats = store.get_stats()

        assert stats["memories_total"] == 3
        assert stats["memories_active"] == 2
        assert stats["memories_inactive"] == 1
        assert stats["vendor_memories"] == 1
        assert stats["correction_memories"] == 1
        assert stats["resolution_memories"] == 0
        assert stats["average_confidence"] == pytest.approx(0.7)
        assert stats["invoices_registered"] == 1


class TestMigrations:
    """Tests for versioned migrations."""

    def test_all_migrations_discovered(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)
        assert {1, 2, 3} <= set(versions)

    def test_migrations_applied_once(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            assert runner.get_current_version() >= 3
            assert runner.run_pending() == []
        finally:
            conn.close()

    def test_store_without_migrations(self, temp_db):
        """Base schema exists without running migrations."""
        MemoryStore(temp_db, run_migrations=False)
        conn = sqlite3.connect(str(temp_db))
        try:
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert "memories" in tables
            assert "memory_events" not in tables
        finally:
            conn.close()

    def test_fresh_database_upgrades_in_order(self, temp_db):
        MemoryStore(temp_db, run_migrations=False)
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)
            assert runner.get_current_version() == 0
            assert [m.version for m in runner.pending()] == [1, 2, 3]

            assert runner.run_pending() == [1, 2, 3]

            assert runner.get_current_version() == 3
            assert runner.pending() == []
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert {"memory_events", "invoice_registry"} <= tables
        finally:
            conn.close()

    def test_failed_migration_is_not_recorded(self, temp_db):
        MemoryStore(temp_db, run_migrations=False)
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)
            with patch(
                "invoice_memory.memory_store.migrations.runner.get_all_migrations",
                return_value=[Migration(1, "broken", lambda c: c.execute("SELECT * FROM missing"))],
            ):
                with pytest.raises(sqlite3.OperationalError):
                    runner.run_pending()
            assert runner.get_current_version() == 0
        finally:
            conn.close()

    def test_decay_column_added(self, store):
        conn = store._get_connection()
        try:
            columns = {r[1] for r in conn.execute("PRAGMA table_info(memories)")}
            assert "last_decayed_at" in columns
        finally:
            conn.close()
