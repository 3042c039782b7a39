"""
Decision scoring implementation.

The DECIDE stage is a pure function of (overall confidence, corrections):
identical inputs always produce the identical Decision, and the order of
corrections does not matter.
"""

from typing import Iterable, Optional

from ..config import DecisionThresholds
from ..schemas import FINANCIAL_FIELDS, Correction, Decision, DecisionOutcome, value_key


class ConfidenceScorer:
    """
    Computes overall invoice confidence and the review decision.

    Rules, first match wins:
    1. confidence >= auto_accept and no corrections           -> AUTO_ACCEPT
    2. confidence >= auto_correct and all corrections reliable -> AUTO_CORRECT
    3. confidence < escalate                                   -> ESCALATE
    4. any risk factor                                         -> ESCALATE
    5. otherwise (ambiguous middle ground)                     -> ESCALATE
    """

    def __init__(self, thresholds: Optional[DecisionThresholds] = None):
        """Initialize scorer with thresholds."""
        self.thresholds = thresholds or DecisionThresholds()

    def aggregate_confidence(
        self,
        applied_confidences: Iterable[float],
        has_conflict: bool,
    ) -> float:
        """
        Overall confidence of an invoice after APPLY.

        Product of the confidences of all memories that produced a
        correction, times a single conflict penalty. With nothing applied
        the baseline confidence is returned.
        """
        confidences = list(applied_confidences)
        if not confidences:
            return self.thresholds.baseline_confidence

        total = 1.0
        for confidence in confidences:
            total *= confidence

        if has_conflict:
            total *= self.thresholds.conflict_penalty

        return total

    @staticmethod
    def detect_conflicts(corrections: list[Correction]) -> list[str]:
        """Fields that received two or more distinct proposed values."""
        values_by_field: dict[str, set[str]] = {}
        for correction in corrections:
            values_by_field.setdefault(correction.field, set()).add(value_key(correction.proposed_value))

        return sorted(f for f, values in values_by_field.items() if len(values) > 1)

    def assess_risk_factors(self, corrections: list[Correction]) -> list[str]:
        """Risk factors that force escalation in the middle confidence band."""
        risks = []

        if any(c.field in FINANCIAL_FIELDS for c in corrections):
            risks.append("financial_impact")

        if any(c.confidence < self.thresholds.low_confidence_correction for c in corrections):
            risks.append("low_confidence_corrections")

        if len(corrections) > self.thresholds.max_corrections:
            risks.append("multiple_corrections")

        return risks

    def decide(self, confidence: float, corrections: list[Correction]) -> Decision:
        """Compute the review decision."""
        t = self.thresholds

        if confidence >= t.auto_accept and not corrections:
            return Decision(
                outcome=DecisionOutcome.AUTO_ACCEPT,
                reasoning=(
                    f"High confidence ({confidence:.3f}) with no corrections needed - AUTO-ACCEPT"
                ),
            )

        if confidence >= t.auto_correct and all(
            c.confidence >= t.reliable_correction for c in corrections
        ):
            return Decision(
                outcome=DecisionOutcome.AUTO_CORRECT,
                reasoning=(
                    f"Good confidence ({confidence:.3f}) with reliable corrections - AUTO-CORRECT"
                ),
            )

        if confidence < t.escalate:
            return Decision(
                outcome=DecisionOutcome.ESCALATE,
                reasoning=f"Low confidence ({confidence:.3f}) - ESCALATE for human review",
            )

        risk_factors = self.assess_risk_factors(corrections)
        if risk_factors:
            return Decision(
                outcome=DecisionOutcome.ESCALATE,
                reasoning=f"Risk factors detected: {', '.join(risk_factors)} - ESCALATE",
                risk_factors=risk_factors,
            )

        return Decision(
            outcome=DecisionOutcome.ESCALATE,
            reasoning=f"Medium confidence ({confidence:.3f}) - ESCALATE for safety",
        )
