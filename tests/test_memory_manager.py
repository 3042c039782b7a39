"""Tests for memory lifecycle management."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from invoice_memory.config import MemoryConfig
from invoice_memory.invoices import InvoiceLookupError, InvoiceNotFoundError, StaticInvoiceLookup
from invoice_memory.memory import HUMAN_REVIEW_SCENARIO, KeyedLock, MemoryManager
from invoice_memory.schemas import (
    ActionKind,
    CorrectionRule,
    FieldCorrection,
    HumanFeedback,
    MemoryQuery,
    MemoryType,
    MemoryUpdate,
    MemoryUpdateKind,
    ResolutionOutcome,
    ResolutionRecord,
    Strategy,
    VendorAction,
    VendorRule,
)
from invoice_memory.schemas.timestamps import to_iso


def service_date_action() -> VendorAction:
    return VendorAction(
        kind=ActionKind.FIELD_MAPPING,
        target_field="service_date",
        strategy=Strategy.EXTRACT_FROM_TEXT.value,
    )


class TestCreateMemories:
    """Tests for memory creation."""

    def test_create_vendor_memory_defaults(self, manager):
        memory = manager.create_vendor_memory(
            "Supplier GmbH", "Leistungsdatum", service_date_action(), "leistungsdatum_mapping"
        )

        assert memory.type == MemoryType.VENDOR
        assert memory.confidence == 0.5
        assert memory.usage_count == 0
        assert memory.is_active
        assert manager.store.get(memory.id) == memory

    def test_create_correction_memory_defaults(self, manager):
        memory = manager.create_correction_memory(
            "Supplier GmbH", "currency", "human_correction", "EUR", "Missing currency"
        )
        assert memory.confidence == 0.4
        assert memory.details.corrected_value == "EUR"

    def test_create_resolution_memory_defaults(self, manager):
        memory = manager.create_resolution_memory(
            "Supplier GmbH", "missing_po", ResolutionOutcome.APPROVED, "Escalated"
        )
        assert memory.confidence == 0.6
        assert memory.details.outcome == ResolutionOutcome.APPROVED

    def test_initial_confidence_capped(self, manager):
        """Confidence above the maximum is capped at creation."""
        memory = manager.create_vendor_memory(
            "Supplier GmbH", "x", service_date_action(), "p", initial_confidence=1.4
        )
        assert memory.confidence == 0.95

    def test_ids_are_unique(self, manager):
        ids = {
            manager.create_correction_memory("V", "currency", "human_correction", "EUR", "r").id
            for _ in range(5)
        }
        assert len(ids) == 5

    def test_create_records_event(self, manager):
        memory = manager.create_correction_memory("V", "currency", "human_correction", "EUR", "r")
        events = manager.store.get_events(memory.id)
        assert [e.kind for e in events] == ["create"]
        assert events[0].confidence_before is None

    def test_action_is_copied(self, manager):
        """Mutating the caller's action does not change the stored memory."""
        action = service_date_action()
        memory = manager.create_vendor_memory("V", "Leistungsdatum", action, "p")
        action.target_field = "date"

        assert manager.store.get(memory.id).details.action.target_field == "service_date"


class TestReinforceWeaken:
    """Tests for reinforcement and weakening."""

    def test_reinforce(self, manager):
        memory = manager.create_correction_memory("V", "currency", "human_correction", "EUR", "r")

        updated = manager.reinforce_memory(memory.id)

        assert updated.confidence == pytest.approx(0.5)
        assert updated.usage_count == 1
        assert updated.last_used_at is not None
        assert updated.details.approval_count == 1

    def test_reinforce_strength_capped(self, manager):
        memory = manager.create_correction_memory("V", "currency", "human_correction", "EUR", "r")
        updated = manager.reinforce_memory(memory.id, strength=0.5)
        assert updated.confidence == pytest.approx(0.5)

    def test_reinforce_never_exceeds_max(self, manager):
        memory = manager.create_correction_memory(
            "V", "currency", "human_correction", "EUR", "r", initial_confidence=0.9
        )
        for _ in range(5):
            manager.reinforce_memory(memory.id)
        assert manager.store.get(memory.id).confidence == 0.95

    def test_weaken(self, manager):
        memory = manager.create_correction_memory(
            "V", "currency", "human_correction", "EUR", "r", initial_confidence=0.7
        )

        updated = manager.weaken_memory(memory.id)

        assert updated.confidence == pytest.approx(0.5)
        assert updated.details.rejection_count == 1
        assert updated.is_active

    def test_weaken_to_floor_deactivates(self, manager, supplier_invoice):
        """A memory weakened to the floor is never recalled again."""
        memory = manager.create_correction_memory(
            "Supplier GmbH", "currency", "human_correction", "EUR", "r", initial_confidence=0.5
        )

        manager.weaken_memory(memory.id, strength=0.3)
        final = manager.weaken_memory(memory.id, strength=0.3)

        assert final.confidence == 0.1
        assert not final.is_active
        assert manager.store.get_events(memory.id)[-1].kind == "deactivate"
        assert manager.recall_memories(supplier_invoice, MemoryQuery(min_confidence=0.0)) == []

    def test_unknown_id_is_noop(self, manager):
        assert manager.reinforce_memory("missing") is None
        assert manager.weaken_memory("missing") is None

    def test_inactive_memory_is_not_revived(self, manager):
        memory = manager.create_correction_memory(
            "V", "currency", "human_correction", "EUR", "r", initial_confidence=0.3
        )
        manager.weaken_memory(memory.id, strength=0.3)

        assert manager.reinforce_memory(memory.id) is None
        assert not manager.store.get(memory.id).is_active

    def test_vendor_memory_has_no_counters(self, manager):
        memory = manager.create_vendor_memory("V", "t", service_date_action(), "p")
        updated = manager.reinforce_memory(memory.id)
        assert isinstance(updated.details, VendorRule)
        assert updated.usage_count == 1


class TestRecall:
    """Tests for recall and decay."""

    @pytest.fixture
    def timed_manager(self, store, clock, lookup):
        return MemoryManager(store, MemoryConfig(), invoice_lookup=lookup, clock=clock)

    def test_recall_scoped_to_vendor(self, manager, supplier_invoice):
        manager.create_correction_memory("Supplier GmbH", "currency", "human_correction", "EUR", "r")
        manager.create_correction_memory("Other AG", "currency", "human_correction", "USD", "r")

        recalled = manager.recall_memories(supplier_invoice)

        assert [m.vendor for m in recalled] == ["Supplier GmbH"]

    def test_recall_roundtrip(self, manager, supplier_invoice):
        """A created correction memory is recalled by type and field."""
        memory = manager.create_correction_memory(
            "Supplier GmbH", "currency", "human_correction", "EUR", "Reviewer fix"
        )

        recalled = manager.recall_memories(
            supplier_invoice, MemoryQuery(type=MemoryType.CORRECTION, field_name="currency")
        )

        assert [m.id for m in recalled] == [memory.id]

    def test_recall_respects_min_confidence(self, manager, supplier_invoice):
        manager.create_correction_memory(
            "Supplier GmbH", "currency", "human_correction", "EUR", "r", initial_confidence=0.2
        )
        assert manager.recall_memories(supplier_invoice) == []
        assert len(manager.recall_memories(supplier_invoice, MemoryQuery(min_confidence=0.1))) == 1

    def test_recall_limit(self, manager, supplier_invoice):
        for _ in range(5):
            manager.create_correction_memory("Supplier GmbH", "currency", "human_correction", "EUR", "r")
        assert len(manager.recall_memories(supplier_invoice, MemoryQuery(limit=2))) == 2

    def test_no_decay_within_grace_window(self, timed_manager, clock, supplier_invoice):
        memory = timed_manager.create_vendor_memory(
            "Supplier GmbH", "Leistungsdatum", service_date_action(), "p", initial_confidence=0.8
        )
        clock.now += timedelta(days=7)
        updates: list[MemoryUpdate] = []

        recalled = timed_manager.recall_memories(supplier_invoice, updates=updates)

        assert recalled[0].confidence == 0.8
        assert updates == []
        assert timed_manager.store.get(memory.id).last_decayed_at is None

    def test_decay_after_grace_window(self, timed_manager, clock, supplier_invoice):
        memory = timed_manager.create_vendor_memory(
            "Supplier GmbH", "Leistungsdatum", service_date_action(), "p", initial_confidence=0.8
        )
        clock.now += timedelta(days=10)
        updates: list[MemoryUpdate] = []

        recalled = timed_manager.recall_memories(supplier_invoice, updates=updates)

        assert recalled[0].confidence == pytest.approx(0.8 * 0.95**3)
        assert timed_manager.store.get(memory.id).confidence == pytest.approx(0.8 * 0.95**3)
        assert [u.kind for u in updates] == [MemoryUpdateKind.DECAY]
        assert updates[0].memory_id == memory.id

    def test_repeated_recall_does_not_compound(self, timed_manager, clock, supplier_invoice):
        timed_manager.create_vendor_memory(
            "Supplier GmbH", "Leistungsdatum", service_date_action(), "p", initial_confidence=0.8
        )
        clock.now += timedelta(days=10)
        timed_manager.recall_memories(supplier_invoice)
        timed_manager.recall_memories(supplier_invoice)
        clock.now += timedelta(days=2)

        recalled = timed_manager.recall_memories(supplier_invoice)

        assert recalled[0].confidence == pytest.approx(0.8 * 0.95**5)

    def test_use_resets_decay_window(self, timed_manager, clock, supplier_invoice):
        memory = timed_manager.create_vendor_memory(
            "Supplier GmbH", "Leistungsdatum", service_date_action(), "p", initial_confidence=0.8
        )
        clock.now += timedelta(days=10)
        timed_manager.recall_memories(supplier_invoice)
        timed_manager.reinforce_memory(memory.id, 0.02)
        clock.now += timedelta(days=3)

        recalled = timed_manager.recall_memories(supplier_invoice)

        assert recalled[0].confidence == pytest.approx(0.8 * 0.95**3 + 0.02)

    def test_decayed_below_minimum_not_recalled(self, timed_manager, clock, supplier_invoice):
        timed_manager.create_vendor_memory(
            "Supplier GmbH", "Leistungsdatum", service_date_action(), "p", initial_confidence=0.35
        )
        clock.now += timedelta(days=30)

        assert timed_manager.recall_memories(supplier_invoice) == []


class TestHumanFeedback:
    """Tests for learning from human feedback."""

    def feedback(self, invoice_id, field, value, reason=None, approved=False) -> HumanFeedback:
        return HumanFeedback(
            invoice_id=invoice_id,
            corrections=[FieldCorrection(field=field, corrected_value=value, reason=reason)],
            approved=approved,
        )

    def vendor_memories(self, manager, vendor):
        return manager.store.query(MemoryQuery(vendor=vendor, type=MemoryType.VENDOR))

    def test_service_date_archetype(self, manager):
        manager.process_human_feedback(
            self.feedback("INV-A-001", "service_date", "2024-01-10", "Leistungsdatum is the service date")
        )

        [memory] = self.vendor_memories(manager, "Supplier GmbH")
        assert memory.details.trigger_signal == "Leistungsdatum"
        assert memory.details.action.strategy == "extract_from_text"
        assert memory.details.pattern == "leistungsdatum_mapping"
        assert memory.confidence == 0.7

    def test_vat_included_archetype(self, manager):
        """VAT-included feedback becomes a computation vendor memory."""
        manager.process_human_feedback(
            self.feedback(
                "PA-2024-0042",
                "vat_included",
                True,
                "MwSt. inkl. and Prices incl. VAT indicate VAT is included",
            )
        )

        [memory] = self.vendor_memories(manager, "Parts AG")
        assert memory.details.trigger_signal == "MwSt. inkl."
        assert memory.details.action.kind == ActionKind.COMPUTATION
        assert memory.details.action.target_field == "vat_included"
        assert memory.details.action.value is True
        assert memory.confidence == 0.8

    def test_currency_archetype_uses_vendor_as_trigger(self, manager):
        manager.process_human_feedback(self.feedback("FC-778", "currency", "EUR"))

        [memory] = self.vendor_memories(manager, "Freight & Co")
        assert memory.details.trigger_signal == "Freight & Co"
        assert memory.details.action.kind == ActionKind.INFERENCE
        assert memory.details.action.value == "EUR"
        assert memory.confidence == 0.6

    def test_sku_archetype(self, manager):
        manager.process_human_feedback(
            self.feedback("FC-778", "line_items", [], "Freight Services map to SKU FREIGHT")
        )

        [memory] = self.vendor_memories(manager, "Freight & Co")
        assert memory.details.trigger_signal == "Freight Services"
        assert memory.details.action.strategy == "sku_mapping"
        assert memory.details.action.value == "FREIGHT"

    def test_generic_correction(self, manager):
        """Unrecognized corrections become always-matching correction memories."""
        manager.process_human_feedback(self.feedback("INV-A-001", "currency", "USD", "Wrong currency"))

        [memory] = manager.store.query(MemoryQuery(type=MemoryType.CORRECTION))
        assert memory.vendor == "Supplier GmbH"
        assert memory.details.original_pattern == "human_correction"
        assert memory.details.corrected_value == "USD"
        assert memory.details.correction_reason == "Wrong currency"
        assert memory.confidence == 0.7

    def test_resolution_recorded(self, manager):
        updates = manager.process_human_feedback(
            self.feedback("INV-A-001", "currency", "USD", approved=True)
        )

        [memory] = manager.store.query(MemoryQuery(type=MemoryType.RESOLUTION))
        assert isinstance(memory.details, ResolutionRecord)
        assert memory.details.scenario == HUMAN_REVIEW_SCENARIO
        assert memory.details.outcome == ResolutionOutcome.APPROVED
        assert "currency" in memory.details.system_action
        assert len(updates) == 2
        assert all(u.kind == MemoryUpdateKind.CREATE for u in updates)

    def test_approved_feedback_does_not_reinforce(self, manager):
        existing = manager.create_correction_memory(
            "Supplier GmbH", "currency", "human_correction", "EUR", "r", initial_confidence=0.6
        )

        manager.process_human_feedback(
            HumanFeedback(invoice_id="INV-A-001", corrections=[], approved=True)
        )

        assert manager.store.get(existing.id).confidence == 0.6

    def test_unknown_invoice_creates_nothing(self, manager):
        with pytest.raises(InvoiceNotFoundError):
            manager.process_human_feedback(self.feedback("unknown", "currency", "EUR"))
        assert manager.store.get_stats()["memories_total"] == 0

    def test_no_lookup_configured(self, store):
        manager = MemoryManager(store)
        with pytest.raises(InvoiceLookupError):
            manager.process_human_feedback(self.feedback("INV-A-001", "currency", "EUR"))

    def test_store_failure_persists_nothing(self, manager):
        """A write error mid-feedback rolls back every memory of that feedback."""
        feedback = HumanFeedback(
            invoice_id="FC-778",
            corrections=[
                FieldCorrection(field="po_number", corrected_value="PO-9"),
                FieldCorrection(field="cost_center", corrected_value="42"),
            ],
        )
        write = manager.store._write_memory
        written = []

        def failing_write(conn, memory):
            written.append(memory.id)
            if len(written) == 2:
                raise sqlite3.OperationalError("disk I/O error")
            write(conn, memory)

        with patch.object(manager.store, "_write_memory", side_effect=failing_write):
            with pytest.raises(sqlite3.OperationalError):
                manager.process_human_feedback(feedback)

        assert manager.store.query(MemoryQuery(active_only=False)) == []
        assert manager.store.get_events(written[0]) == []


class TestConflicts:
    """Tests for conflict detection between correction memories."""

    def test_find_conflicting_memories(self, manager):
        eur = manager.create_correction_memory("V", "currency", "human_correction", "EUR", "r")
        usd = manager.create_correction_memory("V", "currency", "human_correction", "USD", "r")
        manager.create_correction_memory("V", "currency", "human_correction", "EUR", "r")
        manager.create_correction_memory("V", "po_number", "human_correction", "PO-1", "r")
        manager.create_correction_memory("W", "currency", "human_correction", "GBP", "r")

        assert [m.id for m in manager.find_conflicting_memories(eur)] == [usd.id]

    def test_vendor_memory_has_no_conflicts(self, manager):
        memory = manager.create_vendor_memory("V", "t", service_date_action(), "p")
        assert manager.find_conflicting_memories(memory) == []


class TestKeyedLock:
    """Tests for per-key locking."""

    def test_slots_released(self):
        locks = KeyedLock()
        with locks.hold("a"):
            assert len(locks) == 1
            with locks.hold("b"):
                assert len(locks) == 2
        assert len(locks) == 0

    def test_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(ValueError):
            with locks.hold("a"):
                raise ValueError("boom")
        assert len(locks) == 0
