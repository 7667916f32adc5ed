"""
Structured configuration for the regime engine using typed dataclasses.

This is the AUTHORITATIVE source of truth for all configuration values.
``config.py`` imports from here for backward compatibility.

Provides IDE autocomplete, type checking, and organized namespacing.
Each subsystem gets its own dataclass.

Usage:
    from regime_engine.config_structured import get_config
    cfg = get_config()
    cfg.regime.n_states          # IDE knows the type and offers autocomplete
    cfg.bootstrap.block_length   # Clearly scoped to the bootstrap subsystem
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


# ── Enums ─────────────────────────────────────────────────────────────


class DecodingModeName(Enum):
    """Decoding policy applied after training."""
    VITERBI = "viterbi"
    SMOOTHED = "smoothed"


class TransitionInit(Enum):
    """Transition-matrix prior used by the initializer."""
    DIAGONAL = "diagonal"
    UNIFORM = "uniform"


class EstimatorBackend(Enum):
    """EM backend selected once at detector construction."""
    MANUAL = "manual"
    LIBRARY = "library"
    AUTO = "auto"


MAX_HMM_STATES = 10  # Upper bound accepted by validation


@dataclass
class RegimeConfig:
    """Regime detection (Gaussian HMM) configuration."""

    n_states: int = 3
    max_iter: int = 100
    tolerance: float = 1e-4
    decoding_mode: DecodingModeName = DecodingModeName.VITERBI
    transition_init: TransitionInit = TransitionInit.DIAGONAL
    persistence: float = 0.9
    variance_floor: float = 1e-4
    density_floor: float = 1e-300
    min_obs_per_state: int = 10
    starvation_threshold: float = 1e-8
    estimator: EstimatorBackend = EstimatorBackend.MANUAL
    random_state: int = 42
    kmeans_n_init: int = 3
    names_3: Tuple[str, str, str] = ("Bull", "Sideways", "Bear")

    def __post_init__(self):
        # Coerce string values to enums for backward compatibility
        if isinstance(self.decoding_mode, str):
            self.decoding_mode = DecodingModeName(self.decoding_mode)
        if isinstance(self.transition_init, str):
            self.transition_init = TransitionInit(self.transition_init)
        if isinstance(self.estimator, str):
            self.estimator = EstimatorBackend(self.estimator)

        if not isinstance(self.n_states, int) or self.n_states < 1:
            raise ValueError(f"n_states must be a positive integer, got {self.n_states}")
        if self.n_states > MAX_HMM_STATES:
            raise ValueError(
                f"n_states={self.n_states} exceeds {MAX_HMM_STATES}; "
                "a univariate series cannot support that many regimes; check config"
            )
        if not 0.0 < self.persistence < 1.0:
            raise ValueError(f"persistence must be in (0, 1), got {self.persistence}")
        if self.variance_floor <= 0:
            raise ValueError(f"variance_floor must be positive, got {self.variance_floor}")


@dataclass
class BootstrapConfig:
    """Block-bootstrap confidence bands around smoothed posteriors."""

    n_boot: int = 100
    block_length: int = 20
    alpha: float = 0.05


@dataclass
class LoggingConfig:
    """Logging output configuration."""

    level: str = "INFO"
    structured: bool = True


@dataclass
class SystemConfig:
    """Top-level system configuration aggregating all subsystems.

    Provides a single entry point with IDE autocomplete for all config
    domains. Each subsystem is a typed dataclass.
    """

    regime: RegimeConfig = field(default_factory=RegimeConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ── Module-level singleton ──────────────────────────────────────────

_CONFIG: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Return the singleton SystemConfig instance.

    On first call, instantiates the default SystemConfig. Subsequent
    calls return the same instance so all callers share one source of
    truth.
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = SystemConfig()
    return _CONFIG
