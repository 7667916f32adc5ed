"""Shared test fixtures for the regime_engine test suite."""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest


# ── Logging isolation ────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def reset_engine_logger():
    """Drop handlers that entry points attach to the package logger."""
    yield
    engine_logger = logging.getLogger("regime_engine")
    for handler in list(engine_logger.handlers):
        engine_logger.removeHandler(handler)
    engine_logger.setLevel(logging.NOTSET)


# ── Data fixtures ────────────────────────────────────────────────────


@pytest.fixture
def three_regime_series():
    """300 business days: N(2, 0.25²) → N(-2, 0.25²) → N(0, 0.3²), 100 each."""
    rng = np.random.RandomState(7)
    values = np.concatenate([
        rng.normal(2.0, 0.25, 100),
        rng.normal(-2.0, 0.25, 100),
        rng.normal(0.0, 0.30, 100),
    ])
    idx = pd.bdate_range("2021-01-04", periods=values.size)
    return pd.Series(values, index=idx, name="returns")


@pytest.fixture
def overlapping_regime_series():
    """Two 200-step segments with means ±1 and unit variance."""
    rng = np.random.RandomState(11)
    values = np.concatenate([
        rng.normal(1.0, 1.0, 200),
        rng.normal(-1.0, 1.0, 200),
    ])
    return pd.Series(values, name="returns")


@pytest.fixture
def two_state_params():
    """Sticky two-state model with well separated means."""
    from regime_engine.regime.hmm import HMMParams

    return HMMParams(
        transition=np.array([[0.95, 0.05], [0.10, 0.90]]),
        means=np.array([1.0, -1.0]),
        variances=np.array([0.5, 0.8]),
        initial=np.array([0.6, 0.4]),
    )


@pytest.fixture
def three_state_params():
    """Three-state model in descending-mean order."""
    from regime_engine.regime.hmm import HMMParams

    return HMMParams(
        transition=np.array([
            [0.90, 0.05, 0.05],
            [0.05, 0.90, 0.05],
            [0.05, 0.05, 0.90],
        ]),
        means=np.array([2.0, 0.0, -2.0]),
        variances=np.array([0.0625, 0.09, 0.0625]),
        initial=np.full(3, 1.0 / 3.0),
    )
