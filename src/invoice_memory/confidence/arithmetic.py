"""
Confidence arithmetic for memory lifecycle.

All functions are pure. Every result is clamped to
[min_confidence, max_confidence] of the given MemoryConfig.
"""

from datetime import datetime, timezone

from ..config import MemoryConfig


def clamp_confidence(value: float, config: MemoryConfig) -> float:
    """Clamp to the configured confidence bounds."""
    return max(config.min_confidence, min(value, config.max_confidence))


def reinforced_confidence(current: float, strength: float, config: MemoryConfig) -> float:
    """
    Confidence after a successful application.

    The increase is capped at max_confidence_increase per call and never
    negative, so reinforcement is monotonic non-decreasing.
    """
    increase = max(0.0, min(strength, config.max_confidence_increase))
    return clamp_confidence(current + increase, config)


def weakened_confidence(current: float, strength: float, config: MemoryConfig) -> float:
    """
    Confidence after a rejection.

    The decrease is capped at max_confidence_decrease per call and never
    negative, so weakening is monotonic non-increasing.
    """
    decrease = max(0.0, min(strength, config.max_confidence_decrease))
    return clamp_confidence(current - decrease, config)


def is_at_floor(confidence: float, config: MemoryConfig) -> bool:
    """True if a weakened memory must be deactivated."""
    return confidence <= config.min_confidence


def idle_days(since: datetime, now: datetime) -> int:
    """Whole calendar days (UTC) between two moments."""
    start = since.astimezone(timezone.utc).date()
    end = now.astimezone(timezone.utc).date()
    return (end - start).days


def decay_exponent(idle: int, already_applied: int, config: MemoryConfig) -> int:
    """
    Number of decay steps still to apply.

    Args:
        idle: Days since the memory was last used (or created)
        already_applied: Idle days that were already accounted for by an
            earlier decay (0 if the memory was used since)

    The cumulative effect over successive calls is always
    decay_rate ** (idle - decay_after_days), regardless of how often the
    memory is recalled.
    """
    return max(0, idle - max(config.decay_after_days, already_applied))


def decayed_confidence(current: float, exponent: int, config: MemoryConfig) -> float:
    """Apply `exponent` decay steps, floored at min_confidence."""
    if exponent <= 0:
        return current
    return max(current * config.decay_rate**exponent, config.min_confidence)
