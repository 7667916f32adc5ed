"""
Posterior analysis of decoded regimes.

Run lengths, transition points, per-regime statistics, labeled and
empirical transition matrices, the end-of-sample summary, and
moving-block bootstrap intervals on the smoothed posteriors.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config import (
    REGIME_BOOTSTRAP_ALPHA,
    REGIME_BOOTSTRAP_BLOCK_LENGTH,
    REGIME_BOOTSTRAP_N,
    REGIME_DENSITY_FLOOR,
    REGIME_RANDOM_STATE,
)
from .decoder import SmoothedDecoding, ViterbiDecoding
from .errors import InputError
from .hmm import HMMParams, forward_backward

if TYPE_CHECKING:
    from .detector import FittedRegimeModel

logger = logging.getLogger(__name__)

Decoding = Union[ViterbiDecoding, SmoothedDecoding]


# ── Runs and transitions ────────────────────────────────────────────


def run_lengths(states: np.ndarray) -> pd.DataFrame:
    """Maximal constant runs of ``states``: columns ``state, start, length``."""
    s = np.asarray(states, dtype=int).reshape(-1)
    if s.size == 0:
        return pd.DataFrame({"state": [], "start": [], "length": []}, dtype=int)
    starts = np.concatenate([[0], transition_indices(s)])
    ends = np.concatenate([starts[1:], [s.size]])
    return pd.DataFrame({
        "state": s[starts],
        "start": starts,
        "length": ends - starts,
    })


def transition_indices(states: np.ndarray) -> np.ndarray:
    """Positions ``t`` with ``states[t] != states[t-1]`` (first step of each new regime)."""
    s = np.asarray(states, dtype=int).reshape(-1)
    if s.size < 2:
        return np.empty(0, dtype=int)
    return np.flatnonzero(s[1:] != s[:-1]) + 1


def transition_points(
    states: np.ndarray,
    index: Optional[pd.Index],
    names: Sequence[str],
) -> pd.DataFrame:
    """Regime switches as rows of ``position, timestamp, from_regime, to_regime``."""
    s = np.asarray(states, dtype=int).reshape(-1)
    if index is None:
        index = pd.RangeIndex(s.size)
    pos = transition_indices(s)
    names = list(names)
    return pd.DataFrame({
        "position": pos,
        "timestamp": [index[p] for p in pos],
        "from_regime": [names[s[p - 1]] for p in pos],
        "to_regime": [names[s[p]] for p in pos],
    })


# ── Statistics ──────────────────────────────────────────────────────


def regime_statistics(
    y: np.ndarray,
    states: np.ndarray,
    names: Sequence[str],
    posteriors: Optional[Union[np.ndarray, pd.DataFrame]] = None,
) -> pd.DataFrame:
    """Per-regime occupancy and sample moments of the observations.

    ``avg_duration`` is the mean length of the regime's runs (NaN if the
    regime never occurs).  ``avg_posterior`` is the time-average smoothed
    probability of the regime, included when ``posteriors`` is given.
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    s = np.asarray(states, dtype=int).reshape(-1)
    if y.shape != s.shape:
        raise InputError(f"observations ({y.size}) and states ({s.size}) differ in length")
    T = max(s.size, 1)
    runs = run_lengths(s)
    post = None if posteriors is None else np.asarray(posteriors, dtype=np.float64)

    rows = []
    for k, name in enumerate(names):
        mask = s == k
        vals = y[mask]
        k_runs = runs.loc[runs["state"] == k, "length"]
        row: Dict[str, Any] = {
            "regime": name,
            "count": int(mask.sum()),
            "occupancy_pct": 100.0 * mask.sum() / T,
            "mean": float(vals.mean()) if vals.size else np.nan,
            "variance": float(vals.var(ddof=1)) if vals.size > 1 else np.nan,
            "std": float(vals.std(ddof=1)) if vals.size > 1 else np.nan,
            "avg_duration": float(k_runs.mean()) if len(k_runs) else np.nan,
            "n_runs": int(len(k_runs)),
        }
        if post is not None:
            row["avg_posterior"] = float(post[:, k].mean())
        rows.append(row)
    return pd.DataFrame(rows).set_index("regime")


def labeled_transition_matrix(params: HMMParams, names: Sequence[str]) -> pd.DataFrame:
    """Estimated Π with regime names on both axes (rows = from, columns = to)."""
    names = list(names)
    return pd.DataFrame(np.array(params.transition), index=names, columns=names)


def empirical_transition_matrix(states: np.ndarray, names: Sequence[str]) -> pd.DataFrame:
    """Row-normalized counts of observed ``i -> j`` steps in a decoded path.

    A regime with no observed departures gets an all-zero row.
    """
    s = np.asarray(states, dtype=int).reshape(-1)
    names = list(names)
    K = len(names)
    counts = np.zeros((K, K))
    if s.size > 1:
        np.add.at(counts, (s[:-1], s[1:]), 1.0)
    totals = counts.sum(axis=1, keepdims=True)
    probs = np.divide(counts, totals, out=np.zeros_like(counts), where=totals > 0)
    return pd.DataFrame(probs, index=names, columns=names)


# ── Summary ─────────────────────────────────────────────────────────


@dataclass
class RegimeSummary:
    """End-of-sample view of a decoded model."""
    regime_stats: pd.DataFrame
    transition_matrix: pd.DataFrame
    empirical_transitions: pd.DataFrame
    transitions: pd.DataFrame
    current_regime: str
    current_posterior: Dict[str, float]
    convergence: Dict[str, Any] = field(default_factory=dict)
    mode: str = "viterbi"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        stats = self.regime_stats.astype(object).where(self.regime_stats.notna(), None)
        transitions = self.transitions.copy()
        transitions["timestamp"] = transitions["timestamp"].astype(str)
        return {
            "mode": self.mode,
            "current_regime": self.current_regime,
            "current_posterior": {k: float(v) for k, v in self.current_posterior.items()},
            "regime_stats": stats.to_dict(orient="index"),
            "transition_matrix": self.transition_matrix.to_dict(orient="index"),
            "empirical_transitions": self.empirical_transitions.to_dict(orient="index"),
            "transitions": transitions.to_dict(orient="records"),
            "convergence": dict(self.convergence),
        }


def summarize(model: "FittedRegimeModel", decoding: Decoding) -> RegimeSummary:
    """Collect statistics, transitions and the latest regime for a decoding."""
    names = list(model.names)
    if isinstance(decoding, SmoothedDecoding):
        posteriors = decoding.posteriors
    else:
        posteriors = model.posterior
    last = posteriors.iloc[-1]
    return RegimeSummary(
        regime_stats=regime_statistics(
            model.observations.values, decoding.states, names, posteriors,
        ),
        transition_matrix=labeled_transition_matrix(model.params, names),
        empirical_transitions=empirical_transition_matrix(decoding.states, names),
        transitions=transition_points(decoding.states, model.index, names),
        current_regime=str(decoding.labels.iloc[-1]),
        current_posterior={name: float(last[name]) for name in names},
        convergence=model.estimation.to_dict(),
        mode=decoding.mode.value,
    )


# ── Bootstrap intervals ─────────────────────────────────────────────


@dataclass(frozen=True)
class PosteriorIntervals:
    """Per-(t, k) percentile band on the smoothed posterior."""
    lower: pd.DataFrame
    upper: pd.DataFrame
    median: pd.DataFrame
    n_successful: int
    n_failed: int = 0
    alpha: float = REGIME_BOOTSTRAP_ALPHA


def block_resample(y: np.ndarray, block_length: int, rng: np.random.RandomState) -> np.ndarray:
    """Moving-block bootstrap sample of ``y`` with the same length."""
    T = y.shape[0]
    L = max(1, min(int(block_length), T))
    n_blocks = int(np.ceil(T / L))
    starts = rng.randint(0, T - L + 1, size=n_blocks)
    return np.concatenate([y[s:s + L] for s in starts])[:T]


def bootstrap_posterior_intervals(
    fitted: "FittedRegimeModel",
    n_boot: int = REGIME_BOOTSTRAP_N,
    block_length: int = REGIME_BOOTSTRAP_BLOCK_LENGTH,
    alpha: float = REGIME_BOOTSTRAP_ALPHA,
    random_state: Optional[int] = REGIME_RANDOM_STATE,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> PosteriorIntervals:
    """Parameter-uncertainty band on the smoothed posterior.

    Each replicate block-resamples the observations, re-estimates the
    model from scratch via ``fitted.refit`` (states in descending-mean
    order), and runs Forward-Backward with the refitted parameters on the
    original sequence.  Replicates rejected with ``InputError`` are
    skipped and counted in ``n_failed``.

    Raises
    ------
    InputError
        On invalid settings, or when every replicate failed.
    """
    if n_boot < 1:
        raise InputError(f"n_boot must be >= 1, got {n_boot}")
    if block_length < 1:
        raise InputError(f"block_length must be >= 1, got {block_length}")
    if not 0.0 < alpha < 1.0:
        raise InputError(f"alpha must be in (0, 1), got {alpha}")

    y = fitted.observations.values
    names = list(fitted.names)
    rng = np.random.RandomState(random_state)

    draws = []
    n_failed = 0
    for b in range(n_boot):
        sample = block_resample(y, block_length, rng)
        try:
            params = fitted.refit(sample, random_state=rng.randint(0, 2**31 - 1))
        except InputError as exc:
            n_failed += 1
            logger.debug("Bootstrap replicate %d skipped: %s", b, exc)
            continue
        draws.append(forward_backward(y, params, density_floor).smoothed)

    if not draws:
        raise InputError(f"all {n_boot} bootstrap replicates failed")
    if n_failed:
        logger.warning("%d of %d bootstrap replicates failed and were skipped", n_failed, n_boot)

    stack = np.stack(draws)
    lo, med, hi = np.percentile(stack, [100 * alpha / 2, 50.0, 100 * (1 - alpha / 2)], axis=0)
    index = fitted.index
    logger.info(
        "Bootstrap posterior bands: %d replicates (block_length=%d, alpha=%.3f)",
        len(draws), block_length, alpha,
        extra={"metrics": {"n_successful": len(draws), "n_failed": n_failed}},
    )
    return PosteriorIntervals(
        lower=pd.DataFrame(lo, index=index, columns=names),
        upper=pd.DataFrame(hi, index=index, columns=names),
        median=pd.DataFrame(med, index=index, columns=names),
        n_successful=len(draws),
        n_failed=n_failed,
        alpha=alpha,
    )
