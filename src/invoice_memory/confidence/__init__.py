"""
Confidence module.

- Memory confidence arithmetic (clamp, reinforce, weaken, decay)
- Overall invoice confidence and the review decision
"""

from .arithmetic import (
    clamp_confidence,
    decay_exponent,
    decayed_confidence,
    idle_days,
    is_at_floor,
    reinforced_confidence,
    weakened_confidence,
)
from .scorer import ConfidenceScorer

__all__ = [
    "ConfidenceScorer",
    "clamp_confidence",
    "decay_exponent",
    "decayed_confidence",
    "idle_days",
    "is_at_floor",
    "reinforced_confidence",
    "weakened_confidence",
]
