"""
Invoice processor.

Runs the four-stage pipeline for one invoice:

    RECALL -> APPLY -> DECIDE -> LEARN

Each stage emits exactly one audit entry. The stages run strictly in
sequence; there is no branching back and LEARN is terminal.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import DecisionThresholds
from ..confidence import ConfidenceScorer
from ..memory import MemoryManager
from ..schemas import (
    HUMAN_CORRECTION_PATTERN,
    LINE_ITEMS_FIELD,
    AuditEntry,
    AuditStep,
    Correction,
    CorrectionRule,
    HumanFeedback,
    Invoice,
    Memory,
    MemoryQuery,
    MemoryType,
    MemoryUpdate,
    MemoryUpdateKind,
    ProcessingResult,
    ResolutionRecord,
    VendorRule,
    value_key,
)
from ..schemas.timestamps import to_iso
from .strategies import propose_value

logger = logging.getLogger(__name__)


def detect_field_issues(invoice: Invoice) -> list[str]:
    """Fields that look incomplete and deserve correction memories."""
    data = invoice.extracted_data
    issues = []

    if not data.get("service_date") and data.get("date"):
        issues.append("service_date")

    if not data.get("currency"):
        issues.append("currency")

    if not data.get("po_number"):
        issues.append("po_number")

    if data.get("vat_included") is None:
        issues.append("vat_included")

    if not data.get("vat_amount") and data.get("amount"):
        issues.append("vat_amount")

    if any(not item.sku for item in invoice.line_items):
        issues.append(LINE_ITEMS_FIELD)

    return issues


def categorize_scenario(invoice: Invoice) -> str:
    """Scenario label used to recall resolution memories."""
    data = invoice.extracted_data
    scenarios = []

    if not data.get("po_number"):
        scenarios.append("missing_po")
    if not data.get("service_date"):
        scenarios.append("missing_service_date")
    if data.get("vat_included"):
        scenarios.append("vat_included")
    if not data.get("currency"):
        scenarios.append("missing_currency")

    return "_".join(scenarios) or "standard"


def matches_pattern(value: Any, pattern: str) -> bool:
    """
    Whether a field value matches a correction memory's original pattern.

    The pattern is a case-insensitive regex; invalid regexes fall back to
    plain substring containment.
    """
    if pattern == HUMAN_CORRECTION_PATTERN:
        return True

    text = "" if value is None else str(value)
    try:
        return re.search(pattern, text, re.IGNORECASE) is not None
    except re.error:
        return pattern in text


def _same_value(a: Any, b: Any) -> bool:
    return value_key(a) == value_key(b)


@dataclass
class _ApplyOutcome:
    corrections: list[Correction] = field(default_factory=list)
    confidence: float = 0.0
    conflicts: list[str] = field(default_factory=list)
    updates: list[MemoryUpdate] = field(default_factory=list)


class InvoiceProcessor:
    """
    Memory-driven invoice normalization.

    Thresholds are fixed at construction; the processor itself keeps no
    per-invoice state, so one instance can serve many invoices.
    """

    def __init__(
        self,
        memory_manager: MemoryManager,
        thresholds: Optional[DecisionThresholds] = None,
        scorer: Optional[ConfidenceScorer] = None,
    ) -> None:
        self.memory_manager = memory_manager
        self.thresholds = thresholds or (scorer.thresholds if scorer else DecisionThresholds())
        self.scorer = scorer or ConfidenceScorer(self.thresholds)

    def _now(self) -> str:
        return to_iso(self.memory_manager.clock())

    def process_invoice(self, invoice: Invoice) -> ProcessingResult:
        """
        Process one invoice through recall, apply, decide and learn.

        Store failures propagate; a failure while applying a single memory
        is logged and that memory is skipped.
        """
        audit_trail: list[AuditEntry] = []
        memory_updates: list[MemoryUpdate] = []

        # RECALL
        recall_at = self._now()
        memories = self._recall(invoice, memory_updates)
        audit_trail.append(
            AuditEntry(
                step=AuditStep.RECALL,
                timestamp=recall_at,
                details=f"Retrieved {len(memories)} relevant memories for vendor {invoice.vendor}",
                memory_references=[m.id for m in memories],
            )
        )

        # APPLY
        apply_at = self._now()
        applied = self._apply(invoice, memories)
        memory_updates.extend(applied.updates)
        details = (
            f"Applied {len(applied.corrections)} corrections "
            f"with overall confidence {applied.confidence:.3f}"
        )
        if applied.conflicts:
            details += f" (conflicting proposals for {', '.join(applied.conflicts)})"
        audit_trail.append(
            AuditEntry(
                step=AuditStep.APPLY,
                timestamp=apply_at,
                details=details,
                confidence=applied.confidence,
                memory_references=[c.memory_source for c in applied.corrections],
            )
        )

        # DECIDE
        decide_at = self._now()
        decision = self.scorer.decide(applied.confidence, applied.corrections)
        audit_trail.append(
            AuditEntry(
                step=AuditStep.DECIDE,
                timestamp=decide_at,
                details=f"Decision: {decision.outcome.value} - {decision.reasoning}",
                confidence=applied.confidence,
            )
        )

        # LEARN
        learn_at = self._now()
        opportunities = self._learning_opportunities(applied.corrections)
        audit_trail.append(
            AuditEntry(
                step=AuditStep.LEARN,
                timestamp=learn_at,
                details=(
                    f"Identified {len(opportunities)} learning opportunities "
                    f"for future feedback: {', '.join(opportunities)}"
                ),
            )
        )

        logger.info(
            f"Invoice {invoice.id} ({invoice.vendor}): {decision.outcome.value} "
            f"confidence={applied.confidence:.3f} corrections={len(applied.corrections)}"
        )

        return ProcessingResult(
            normalized_invoice=invoice.with_corrections(applied.corrections),
            proposed_corrections=applied.corrections,
            requires_human_review=decision.requires_review,
            reasoning=decision.reasoning,
            confidence_score=applied.confidence,
            memory_updates=memory_updates,
            audit_trail=audit_trail,
            decision=decision.outcome,
            risk_factors=decision.risk_factors,
        )

    def submit_feedback(self, feedback: HumanFeedback) -> list[MemoryUpdate]:
        """Learn from a human review. Lookup and store errors propagate."""
        return self.memory_manager.process_human_feedback(feedback)

    process_human_feedback = submit_feedback

    # Stages

    def _recall(self, invoice: Invoice, updates: list[MemoryUpdate]) -> list[Memory]:
        manager = self.memory_manager
        memories = manager.recall_memories(
            invoice, MemoryQuery(type=MemoryType.VENDOR), updates=updates
        )

        for field_name in detect_field_issues(invoice):
            memories.extend(
                manager.recall_memories(
                    invoice,
                    MemoryQuery(type=MemoryType.CORRECTION, field_name=field_name),
                    updates=updates,
                )
            )

        scenario = categorize_scenario(invoice)
        resolutions = manager.recall_memories(
            invoice, MemoryQuery(type=MemoryType.RESOLUTION), updates=updates
        )
        memories.extend(
            m
            for m in resolutions
            if isinstance(m.details, ResolutionRecord) and scenario in m.details.scenario
        )

        return memories

    def _apply(self, invoice: Invoice, memories: list[Memory]) -> _ApplyOutcome:
        outcome = _ApplyOutcome()
        applied_confidences = []

        for memory in memories:
            if memory.confidence < self.thresholds.memory_application:
                continue

            try:
                correction = self._correction_from(invoice, memory)
            except Exception:
                logger.warning(
                    f"Skipping memory {memory.id} for invoice {invoice.id}: apply failed",
                    exc_info=True,
                )
                continue

            if correction is None:
                continue

            outcome.corrections.append(correction)
            applied_confidences.append(memory.confidence)

            reinforced = self.memory_manager.reinforce_memory(
                memory.id, self.thresholds.application_reinforcement
            )
            if reinforced is not None:
                outcome.updates.append(
                    MemoryUpdate(
                        kind=MemoryUpdateKind.REINFORCE,
                        memory_id=memory.id,
                        details=f"Applied memory for {correction.field} correction",
                    )
                )

        outcome.conflicts = self.scorer.detect_conflicts(outcome.corrections)
        outcome.confidence = self.scorer.aggregate_confidence(
            applied_confidences, has_conflict=bool(outcome.conflicts)
        )
        return outcome

    def _correction_from(self, invoice: Invoice, memory: Memory) -> Optional[Correction]:
        details = memory.details

        if isinstance(details, VendorRule):
            target = details.action.target_field
            current = invoice.get_field(target)
            proposed = propose_value(invoice, details)
            if proposed is None or _same_value(proposed, current):
                return None
            return Correction(
                field=target,
                original_value=current,
                proposed_value=proposed,
                confidence=memory.confidence,
                memory_source=memory.id,
                reasoning=(
                    f"Vendor memory: {details.trigger_signal} -> {target} "
                    f"({details.action.kind.value})"
                ),
            )

        if isinstance(details, CorrectionRule):
            current = invoice.get_field(details.field_name)
            if not matches_pattern(current, details.original_pattern):
                return None
            return Correction(
                field=details.field_name,
                original_value=current,
                proposed_value=details.corrected_value,
                confidence=memory.confidence,
                memory_source=memory.id,
                reasoning=(
                    f"Correction memory: {details.correction_reason} "
                    f"(approved {details.approval_count}x)"
                ),
            )

        # Resolution memories are recalled for audit only
        return None

    @staticmethod
    def _learning_opportunities(corrections: list[Correction]) -> list[str]:
        if not corrections:
            return ["successful_processing"]
        return [f"correction_{c.field}" for c in corrections]
