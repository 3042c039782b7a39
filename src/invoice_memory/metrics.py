"""
In-process processing metrics.

Counts decisions per vendor for one run (CLI batch, test session). Nothing
is persisted; memory statistics come from MemoryStore.get_stats().
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .schemas import DecisionOutcome, ProcessingResult

logger = logging.getLogger(__name__)


@dataclass
class VendorStats:
    """Per-vendor counters."""

    vendor: str
    processed: int = 0
    auto_accepted: int = 0
    auto_corrected: int = 0
    escalated: int = 0
    errors: int = 0
    total_confidence: float = 0.0
    total_duration_ms: float = 0.0
    memories_applied: int = 0

    @property
    def automation_rate(self) -> float:
        """Share of processed invoices that needed no review."""
        if not self.processed:
            return 0.0
        return (self.auto_accepted + self.auto_corrected) / self.processed

    @property
    def average_confidence(self) -> float:
        return self.total_confidence / self.processed if self.processed else 0.0

    def to_dict(self) -> dict:
        return {
            "vendor": self.vendor,
            "invoice_count": self.processed,
            "automation_rate": round(self.automation_rate, 4),
            "average_confidence": round(self.average_confidence, 4),
            "errors": self.errors,
        }


@dataclass
class ProcessingSummary:
    """Aggregated metrics over all vendors."""

    total_processed: int = 0
    auto_accepted: int = 0
    auto_corrected: int = 0
    escalated: int = 0
    errors: int = 0
    average_confidence: float = 0.0
    average_processing_ms: float = 0.0
    memory_application_rate: float = 0.0
    error_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_processed": self.total_processed,
            "auto_accepted": self.auto_accepted,
            "auto_corrected": self.auto_corrected,
            "escalated": self.escalated,
            "errors": self.errors,
            "average_confidence": round(self.average_confidence, 4),
            "average_processing_ms": round(self.average_processing_ms, 2),
            "memory_application_rate": round(self.memory_application_rate, 4),
            "error_rate": round(self.error_rate, 4),
        }


@dataclass
class MetricsCollector:
    """Collects per-invoice outcomes."""

    vendors: dict[str, VendorStats] = field(default_factory=dict)

    def _stats(self, vendor: str) -> VendorStats:
        if vendor not in self.vendors:
            self.vendors[vendor] = VendorStats(vendor=vendor)
        return self.vendors[vendor]

    def record_result(self, vendor: str, result: ProcessingResult, duration_ms: float = 0.0) -> None:
        """Record one processed invoice."""
        stats = self._stats(vendor)
        stats.processed += 1
        stats.total_confidence += result.confidence_score
        stats.total_duration_ms += duration_ms
        stats.memories_applied += len({c.memory_source for c in result.proposed_corrections})

        if result.decision is DecisionOutcome.AUTO_ACCEPT:
            stats.auto_accepted += 1
        elif result.decision is DecisionOutcome.AUTO_CORRECT:
            stats.auto_corrected += 1
        else:
            stats.escalated += 1

    def record_error(self, vendor: Optional[str], error: Exception) -> None:
        """Record an invoice that failed to process."""
        self._stats(vendor or "unknown").errors += 1
        logger.debug(f"Recorded processing error for {vendor}: {error}")

    def vendor_metrics(self, vendor: str) -> Optional[VendorStats]:
        return self.vendors.get(vendor)

    def summary(self) -> ProcessingSummary:
        """
        Aggregate over all vendors.

        Averages are over successfully processed invoices; the error rate is
        errors over all attempted invoices.
        """
        s = ProcessingSummary()
        total_confidence = 0.0
        total_duration = 0.0
        memories_applied = 0

        for stats in self.vendors.values():
            s.total_processed += stats.processed
            s.auto_accepted += stats.auto_accepted
            s.auto_corrected += stats.auto_corrected
            s.escalated += stats.escalated
            s.errors += stats.errors
            total_confidence += stats.total_confidence
            total_duration += stats.total_duration_ms
            memories_applied += stats.memories_applied

        if s.total_processed:
            s.average_confidence = total_confidence / s.total_processed
            s.average_processing_ms = total_duration / s.total_processed
            s.memory_application_rate = memories_applied / s.total_processed

        attempted = s.total_processed + s.errors
        if attempted:
            s.error_rate = s.errors / attempted

        return s
