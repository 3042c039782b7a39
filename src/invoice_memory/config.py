"""
Configuration management (SSOT).

This module defines ALL configuration for the invoice memory pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Decision thresholds and confidence arithmetic constants are passed into
  the processor/manager at construction, never read from module globals
- Memory confidence always lives in [min_confidence, max_confidence]
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class DecisionThresholds:
    """Thresholds for the DECIDE stage and memory application."""

    # Confidence >= this with zero corrections: AUTO-ACCEPT
    auto_accept: float = 0.85
    # Confidence >= this with only reliable corrections: AUTO-CORRECT
    auto_correct: float = 0.65
    # Confidence below this always escalates
    escalate: float = 0.4
    # Memories below this confidence are recalled but not applied
    memory_application: float = 0.5
    # Every correction must reach this for AUTO-CORRECT
    reliable_correction: float = 0.7
    # Corrections below this are a "low_confidence_corrections" risk
    low_confidence_correction: float = 0.6
    # More corrections than this are a "multiple_corrections" risk
    max_corrections: int = 3
    # Applied once when any field received conflicting proposals
    conflict_penalty: float = 0.7
    # Overall confidence when no memory produced a correction
    baseline_confidence: float = 0.9
    # Reinforcement applied to a memory each time it produces a correction
    application_reinforcement: float = 0.02


@dataclass
class MemoryConfig:
    """Memory lifecycle settings (creation, reinforcement, decay)."""

    # Passive decay: confidence *= decay_rate ** (idle_days - decay_after_days)
    decay_rate: float = 0.95
    decay_after_days: int = 7
    # Per-call caps on reinforcement/weakening
    max_confidence_increase: float = 0.1
    max_confidence_decrease: float = 0.3
    # Clamp bounds; reaching min_confidence via weakening deactivates
    min_confidence: float = 0.1
    max_confidence: float = 0.95
    # Recall defaults
    recall_min_confidence: float = 0.3
    recall_limit: int = 50
    # Initial confidences
    vendor_initial_confidence: float = 0.5
    correction_initial_confidence: float = 0.4
    resolution_initial_confidence: float = 0.6
    human_correction_confidence: float = 0.7
    # Default strengths
    reinforce_strength: float = 0.1
    weaken_strength: float = 0.2


@dataclass
class InvoiceStoreConfig:
    """Invoice store used to resolve the vendor of a feedback's invoice.

    If base_url is not set, the local invoice registry is used instead.
    """

    base_url: str | None = None
    token: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    thresholds: DecisionThresholds = field(default_factory=DecisionThresholds)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    invoice_store: InvoiceStoreConfig = field(default_factory=InvoiceStoreConfig)
    memory_db_path: Path = field(default_factory=lambda: Path("data/memory.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []
        t = self.thresholds
        m = self.memory

        for name in (
            "auto_accept",
            "auto_correct",
            "escalate",
            "memory_application",
            "reliable_correction",
            "low_confidence_correction",
            "conflict_penalty",
            "baseline_confidence",
        ):
            value = getattr(t, name)
            if value < 0 or value > 1:
                errors.append(f"thresholds.{name} must be between 0 and 1")

        if not (t.escalate <= t.auto_correct <= t.auto_accept):
            errors.append("thresholds must satisfy escalate <= auto_correct <= auto_accept")

        if t.max_corrections < 0:
            errors.append("thresholds.max_corrections must be >= 0")

        if m.min_confidence >= m.max_confidence:
            errors.append("memory.min_confidence must be less than memory.max_confidence")

        if m.decay_rate <= 0 or m.decay_rate > 1:
            errors.append("memory.decay_rate must be in (0, 1]")

        if m.decay_after_days < 0:
            errors.append("memory.decay_after_days must be >= 0")

        if m.recall_limit < 1:
            errors.append("memory.recall_limit must be >= 1")

        return errors


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if raw:
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Ignoring non-numeric {name}={raw!r}")
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if raw:
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring non-integer {name}={raw!r}")
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - INVOICE_MEMORY_DB_PATH
    - THRESHOLD_AUTO_ACCEPT, THRESHOLD_AUTO_CORRECT, THRESHOLD_ESCALATE,
      THRESHOLD_MEMORY_APPLICATION
    - MEMORY_DECAY_RATE, MEMORY_DECAY_AFTER_DAYS, MEMORY_MAX_INCREASE,
      MEMORY_MIN_CONFIDENCE, MEMORY_MAX_CONFIDENCE
    - INVOICE_STORE_URL, INVOICE_STORE_TOKEN
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Decision thresholds
    t_data = data.get("thresholds", {})
    defaults = DecisionThresholds()
    thresholds = DecisionThresholds(
        auto_accept=_env_float(
            "THRESHOLD_AUTO_ACCEPT", t_data.get("auto_accept", defaults.auto_accept)
        ),
        auto_correct=_env_float(
            "THRESHOLD_AUTO_CORRECT", t_data.get("auto_correct", defaults.auto_correct)
        ),
        escalate=_env_float("THRESHOLD_ESCALATE", t_data.get("escalate", defaults.escalate)),
        memory_application=_env_float(
            "THRESHOLD_MEMORY_APPLICATION",
            t_data.get("memory_application", defaults.memory_application),
        ),
        reliable_correction=t_data.get("reliable_correction", defaults.reliable_correction),
        low_confidence_correction=t_data.get(
            "low_confidence_correction", defaults.low_confidence_correction
        ),
        max_corrections=t_data.get("max_corrections", defaults.max_corrections),
        conflict_penalty=t_data.get("conflict_penalty", defaults.conflict_penalty),
        baseline_confidence=t_data.get("baseline_confidence", defaults.baseline_confidence),
        application_reinforcement=t_data.get(
            "application_reinforcement", defaults.application_reinforcement
        ),
    )

    # Memory lifecycle
    m_data = data.get("memory", {})
    m_defaults = MemoryConfig()
    memory = MemoryConfig(
        decay_rate=_env_float("MEMORY_DECAY_RATE", m_data.get("decay_rate", m_defaults.decay_rate)),
        decay_after_days=_env_int(
            "MEMORY_DECAY_AFTER_DAYS", m_data.get("decay_after_days", m_defaults.decay_after_days)
        ),
        max_confidence_increase=_env_float(
            "MEMORY_MAX_INCREASE",
            m_data.get("max_confidence_increase", m_defaults.max_confidence_increase),
        ),
        max_confidence_decrease=m_data.get(
            "max_confidence_decrease", m_defaults.max_confidence_decrease
        ),
        min_confidence=_env_float(
            "MEMORY_MIN_CONFIDENCE", m_data.get("min_confidence", m_defaults.min_confidence)
        ),
        max_confidence=_env_float(
            "MEMORY_MAX_CONFIDENCE", m_data.get("max_confidence", m_defaults.max_confidence)
        ),
        recall_min_confidence=m_data.get(
            "recall_min_confidence", m_defaults.recall_min_confidence
        ),
        recall_limit=m_data.get("recall_limit", m_defaults.recall_limit),
        vendor_initial_confidence=m_data.get(
            "vendor_initial_confidence", m_defaults.vendor_initial_confidence
        ),
        correction_initial_confidence=m_data.get(
            "correction_initial_confidence", m_defaults.correction_initial_confidence
        ),
        resolution_initial_confidence=m_data.get(
            "resolution_initial_confidence", m_defaults.resolution_initial_confidence
        ),
        human_correction_confidence=m_data.get(
            "human_correction_confidence", m_defaults.human_correction_confidence
        ),
        reinforce_strength=m_data.get("reinforce_strength", m_defaults.reinforce_strength),
        weaken_strength=m_data.get("weaken_strength", m_defaults.weaken_strength),
    )

    # Invoice store (vendor lookup for feedback)
    s_data = data.get("invoice_store", {})
    invoice_store = InvoiceStoreConfig(
        base_url=os.environ.get("INVOICE_STORE_URL", s_data.get("base_url")) or None,
        token=os.environ.get("INVOICE_STORE_TOKEN", s_data.get("token", "")),
        timeout_seconds=s_data.get("timeout_seconds", 30),
        max_retries=s_data.get("max_retries", 3),
    )

    db_path = os.environ.get(
        "INVOICE_MEMORY_DB_PATH", data.get("memory_db_path", "data/memory.db")
    )

    return Config(
        thresholds=thresholds,
        memory=memory,
        invoice_store=invoice_store,
        memory_db_path=Path(db_path),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Invoice Memory Pipeline Configuration

# Memory database (SQLite)
memory_db_path: "data/memory.db"

# Decision thresholds
thresholds:
  auto_accept: 0.85              # No corrections and at least this: auto-accept
  auto_correct: 0.65             # Reliable corrections and at least this: auto-correct
  escalate: 0.4                  # Below this: always escalate
  memory_application: 0.5        # Memories below this are not applied
  reliable_correction: 0.7       # Per-correction floor for auto-correct
  low_confidence_correction: 0.6 # Corrections below this are a risk factor
  max_corrections: 3             # More corrections than this are a risk factor
  conflict_penalty: 0.7          # Multiplier when memories disagree on a field
  baseline_confidence: 0.9       # Confidence when nothing needs changing
  application_reinforcement: 0.02

# Memory lifecycle
memory:
  decay_rate: 0.95               # Per idle day after the grace window
  decay_after_days: 7            # Grace window (days)
  max_confidence_increase: 0.1
  max_confidence_decrease: 0.3
  min_confidence: 0.1            # Weakening to this deactivates a memory
  max_confidence: 0.95
  recall_min_confidence: 0.3
  recall_limit: 50

# Invoice store used to resolve the vendor of a feedback's invoice.
# Leave base_url empty to use the local invoice registry.
invoice_store:
  base_url: null
  token: ""
  timeout_seconds: 30
  max_retries: 3
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
