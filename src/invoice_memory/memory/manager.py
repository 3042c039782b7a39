"""
Memory lifecycle management.

The MemoryManager owns every confidence change:
- creation (bootstrap or from human feedback)
- recall with lazy, time-based decay
- reinforcement after a successful application
- weakening (and deactivation) after a rejection
"""

import copy
import logging
from collections.abc import Callable
from dataclasses import fields
from datetime import datetime
from typing import Any, Optional

from ..config import MemoryConfig
from ..confidence import (
    clamp_confidence,
    decay_exponent,
    decayed_confidence,
    idle_days,
    is_at_floor,
    reinforced_confidence,
    weakened_confidence,
)
from ..invoices import InvoiceLookup, InvoiceLookupError
from ..memory_store import MemoryStore
from ..schemas import (
    HUMAN_CORRECTION_PATTERN,
    CorrectionRule,
    HumanFeedback,
    Invoice,
    Memory,
    MemoryQuery,
    MemoryType,
    MemoryUpdate,
    MemoryUpdateKind,
    ResolutionOutcome,
    ResolutionRecord,
    VendorAction,
    VendorRule,
    to_jsonable,
    value_key,
)
from ..schemas.timestamps import parse_iso, to_iso, utc_now
from .archetypes import match_archetype
from .locks import KeyedLock

logger = logging.getLogger(__name__)

# Scenario label of resolution memories recorded from feedback
HUMAN_REVIEW_SCENARIO = "human_review"


class MemoryManager:
    """
    Creates, recalls, reinforces, weakens and decays memories.

    Mutations of the same memory are serialized in-process (keyed lock) and
    written with an atomic read-modify-write in the store, so concurrent
    invoices of one vendor cannot lose confidence updates.
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[MemoryConfig] = None,
        invoice_lookup: Optional[InvoiceLookup] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Memory store.
            config: Memory lifecycle settings (defaults if omitted).
            invoice_lookup: Resolves the vendor of a feedback's invoice.
            clock: Returns the current time (UTC); injectable for tests.
        """
        self.store = store
        self.config = config or MemoryConfig()
        self.invoice_lookup = invoice_lookup
        self.clock = clock
        self._locks = KeyedLock()

    # Recall

    def recall_memories(
        self,
        invoice: Invoice,
        query: Optional[MemoryQuery] = None,
        updates: Optional[list[MemoryUpdate]] = None,
    ) -> list[Memory]:
        """
        Recall active memories relevant to an invoice.

        The query defaults to the invoice's vendor, recall_min_confidence and
        recall_limit; any non-None field of `query` overrides the default.
        Decay is applied to each recalled memory before filtering on the
        minimum confidence.

        Args:
            invoice: Invoice being processed
            query: Extra filter (type, field_name, pattern, ...)
            updates: If given, decay updates are appended to it
        """
        full_query = MemoryQuery(
            vendor=invoice.vendor,
            min_confidence=self.config.recall_min_confidence,
            limit=self.config.recall_limit,
        )
        if query is not None:
            for f in fields(MemoryQuery):
                if f.name == "active_only":
                    continue
                value = getattr(query, f.name)
                if value is not None:
                    setattr(full_query, f.name, value)

        memories = self.store.query(full_query)
        now = self.clock()

        recalled = []
        for memory in memories:
            decayed = self._apply_decay(memory, now)
            if decayed is not None:
                if updates is not None:
                    updates.append(
                        MemoryUpdate(
                            kind=MemoryUpdateKind.DECAY,
                            memory_id=memory.id,
                            details=(
                                f"Decayed from {memory.confidence:.3f} "
                                f"to {decayed.confidence:.3f} after inactivity"
                            ),
                        )
                    )
                memory = decayed

            if memory.confidence >= full_query.min_confidence:
                recalled.append(memory)

        logger.debug(
            f"Recalled {len(recalled)}/{len(memories)} memories for {invoice.vendor!r} "
            f"(type={full_query.type}, field={full_query.field_name})"
        )
        return recalled

    def _apply_decay(self, memory: Memory, now: datetime) -> Optional[Memory]:
        """Decay an idle memory. Returns the updated memory, or None if unchanged."""

        def mutate(fresh: Memory) -> Optional[str]:
            anchor = parse_iso(fresh.last_used_at or fresh.created_at)
            idle = idle_days(anchor, now)

            already = 0
            if fresh.last_decayed_at:
                decayed_at = parse_iso(fresh.last_decayed_at)
                if decayed_at > anchor:
                    already = idle_days(anchor, decayed_at)

            exponent = decay_exponent(idle, already, self.config)
            if exponent <= 0:
                return None

            fresh.confidence = decayed_confidence(fresh.confidence, exponent, self.config)
            fresh.last_decayed_at = to_iso(now)
            return MemoryUpdateKind.DECAY.value

        # Cheap pre-check on the snapshot before taking the write lock
        anchor = parse_iso(memory.last_used_at or memory.created_at)
        if idle_days(anchor, now) <= self.config.decay_after_days:
            return None

        with self._locks.hold(memory.id):
            updated = self.store.update_memory(memory.id, mutate)

        if updated is not None:
            logger.debug(
                f"Memory {memory.id} decayed {memory.confidence:.3f} -> {updated.confidence:.3f}"
            )
        return updated

    # Creation

    def _new_memory(self, memory_type: MemoryType, vendor: str, details: Any, confidence: float) -> Memory:
        now = to_iso(self.clock())
        return Memory(
            type=memory_type,
            vendor=vendor,
            details=details,
            confidence=clamp_confidence(confidence, self.config),
            created_at=now,
            last_updated_at=now,
        )

    def _persist(self, memories: list[Memory]) -> None:
        self.store.save_many(memories, event=MemoryUpdateKind.CREATE.value)
        for memory in memories:
            logger.info(
                f"Created {memory.type.value} memory {memory.id} for {memory.vendor!r}: "
                f"{memory.describe()} (confidence {memory.confidence:.2f})"
            )

    def create_vendor_memory(
        self,
        vendor: str,
        trigger_signal: str,
        action: VendorAction,
        pattern: str,
        initial_confidence: Optional[float] = None,
    ) -> Memory:
        """Create and persist a vendor memory."""
        memory = self._vendor_memory(vendor, trigger_signal, action, pattern, initial_confidence)
        self._persist([memory])
        return memory

    def _vendor_memory(
        self,
        vendor: str,
        trigger_signal: str,
        action: VendorAction,
        pattern: str,
        initial_confidence: Optional[float] = None,
    ) -> Memory:
        if initial_confidence is None:
            initial_confidence = self.config.vendor_initial_confidence
        details = VendorRule(
            trigger_signal=trigger_signal,
            action=copy.deepcopy(action),
            pattern=pattern,
        )
        return self._new_memory(MemoryType.VENDOR, vendor, details, initial_confidence)

    def create_correction_memory(
        self,
        vendor: str,
        field_name: str,
        original_pattern: str,
        corrected_value: Any,
        correction_reason: str,
        initial_confidence: Optional[float] = None,
    ) -> Memory:
        """Create and persist a correction memory."""
        memory = self._correction_memory(
            vendor, field_name, original_pattern, corrected_value, correction_reason, initial_confidence
        )
        self._persist([memory])
        return memory

    def _correction_memory(
        self,
        vendor: str,
        field_name: str,
        original_pattern: str,
        corrected_value: Any,
        correction_reason: str,
        initial_confidence: Optional[float] = None,
    ) -> Memory:
        if initial_confidence is None:
            initial_confidence = self.config.correction_initial_confidence
        details = CorrectionRule(
            field_name=field_name,
            original_pattern=original_pattern,
            corrected_value=to_jsonable(corrected_value),
            correction_reason=correction_reason,
        )
        return self._new_memory(MemoryType.CORRECTION, vendor, details, initial_confidence)

    def create_resolution_memory(
        self,
        vendor: str,
        scenario: str,
        outcome: ResolutionOutcome,
        system_action: str,
        human_feedback: Optional[str] = None,
        initial_confidence: Optional[float] = None,
    ) -> Memory:
        """Create and persist a resolution memory."""
        memory = self._resolution_memory(
            vendor, scenario, outcome, system_action, human_feedback, initial_confidence
        )
        self._persist([memory])
        return memory

    def _resolution_memory(
        self,
        vendor: str,
        scenario: str,
        outcome: ResolutionOutcome,
        system_action: str,
        human_feedback: Optional[str] = None,
        initial_confidence: Optional[float] = None,
    ) -> Memory:
        if initial_confidence is None:
            initial_confidence = self.config.resolution_initial_confidence
        details = ResolutionRecord(
            scenario=scenario,
            outcome=ResolutionOutcome(outcome),
            system_action=system_action,
            human_feedback=human_feedback,
        )
        return self._new_memory(MemoryType.RESOLUTION, vendor, details, initial_confidence)

    # Reinforcement / weakening

    def reinforce_memory(self, memory_id: str, strength: Optional[float] = None) -> Optional[Memory]:
        """
        Raise a memory's confidence after a successful application.

        Unknown or inactive ids are ignored.

        Returns:
            The updated memory, or None if nothing was changed.
        """
        if strength is None:
            strength = self.config.reinforce_strength
        used_at = to_iso(self.clock())

        def mutate(memory: Memory) -> Optional[str]:
            if not memory.is_active:
                return None
            memory.confidence = reinforced_confidence(memory.confidence, strength, self.config)
            memory.usage_count += 1
            memory.last_used_at = used_at
            if isinstance(memory.details, CorrectionRule):
                memory.details.approval_count += 1
            return MemoryUpdateKind.REINFORCE.value

        with self._locks.hold(memory_id):
            updated = self.store.update_memory(memory_id, mutate)

        if updated is None:
            logger.debug(f"Reinforce ignored for unknown/inactive memory {memory_id}")
        else:
            logger.debug(f"Reinforced memory {memory_id} to {updated.confidence:.3f}")
        return updated

    def weaken_memory(self, memory_id: str, strength: Optional[float] = None) -> Optional[Memory]:
        """
        Lower a memory's confidence after a rejection.

        A memory weakened down to min_confidence is deactivated and will
        never be recalled again. Unknown or inactive ids are ignored.

        Returns:
            The updated memory, or None if nothing was changed.
        """
        if strength is None:
            strength = self.config.weaken_strength

        def mutate(memory: Memory) -> Optional[str]:
            if not memory.is_active:
                return None
            memory.confidence = weakened_confidence(memory.confidence, strength, self.config)
            if isinstance(memory.details, CorrectionRule):
                memory.details.rejection_count += 1
            if is_at_floor(memory.confidence, self.config):
                memory.is_active = False
                return "deactivate"
            return MemoryUpdateKind.WEAKEN.value

        with self._locks.hold(memory_id):
            updated = self.store.update_memory(memory_id, mutate)

        if updated is None:
            logger.debug(f"Weaken ignored for unknown/inactive memory {memory_id}")
        elif not updated.is_active:
            logger.info(f"Memory {memory_id} deactivated (confidence at floor)")
        else:
            logger.debug(f"Weakened memory {memory_id} to {updated.confidence:.3f}")
        return updated

    # Feedback

    def resolve_vendor(self, invoice_id: str) -> str:
        """Vendor of the invoice a feedback refers to."""
        if self.invoice_lookup is None:
            raise InvoiceLookupError("No invoice lookup configured")
        return self.invoice_lookup.resolve_vendor(invoice_id)

    def process_human_feedback(self, feedback: HumanFeedback) -> list[MemoryUpdate]:
        """
        Turn reviewer feedback into memories.

        Corrections matching a known archetype become specialized vendor
        memories; everything else becomes a generic correction memory that
        always applies. The review outcome itself is kept as a resolution
        memory.

        Approved feedback does not reinforce the memories that produced the
        original suggestions: results do not record which suggestion the
        reviewer accepted.

        All memories of one feedback are written in a single transaction.

        Raises:
            InvoiceLookupError: If the invoice's vendor cannot be resolved
                (no memories are created in that case)
            sqlite3.Error: If the store write fails (nothing is persisted)
        """
        vendor = self.resolve_vendor(feedback.invoice_id)
        learned: list[tuple[Memory, str]] = []

        for correction in feedback.corrections:
            archetype = match_archetype(correction)
            if archetype is not None:
                memory = self._vendor_memory(
                    vendor,
                    archetype.trigger_for(vendor),
                    archetype.action,
                    archetype.pattern,
                    archetype.confidence,
                )
                details = f"Learned {archetype.name} for {correction.field}"
            else:
                memory = self._correction_memory(
                    vendor,
                    correction.field,
                    HUMAN_CORRECTION_PATTERN,
                    correction.corrected_value,
                    correction.reason or "Human correction",
                    self.config.human_correction_confidence,
                )
                details = f"Learned correction for {correction.field}"

            learned.append((memory, details))

        corrected = ", ".join(c.field for c in feedback.corrections) or "none"
        resolution = self._resolution_memory(
            vendor,
            HUMAN_REVIEW_SCENARIO,
            ResolutionOutcome.APPROVED if feedback.approved else ResolutionOutcome.REJECTED,
            system_action=f"Human review corrected fields: {corrected}",
            human_feedback=feedback.comments,
        )
        learned.append((resolution, f"Recorded review outcome for invoice {feedback.invoice_id}"))

        self._persist([memory for memory, _ in learned])

        updates = [
            MemoryUpdate(kind=MemoryUpdateKind.CREATE, memory_id=memory.id, details=details)
            for memory, details in learned
        ]

        logger.info(
            f"Processed feedback for invoice {feedback.invoice_id} ({vendor!r}): "
            f"{len(feedback.corrections)} corrections, approved={feedback.approved}"
        )
        return updates

    # Conflicts

    def find_conflicting_memories(self, memory: Memory) -> list[Memory]:
        """Active correction memories of the same vendor/field with a different value."""
        if not isinstance(memory.details, CorrectionRule):
            return []

        existing = self.store.query(
            MemoryQuery(
                vendor=memory.vendor,
                type=MemoryType.CORRECTION,
                field_name=memory.details.field_name,
            )
        )
        own_value = value_key(memory.details.corrected_value)
        return [
            other
            for other in existing
            if other.id != memory.id
            and isinstance(other.details, CorrectionRule)
            and value_key(other.details.corrected_value) != own_value
        ]
