"""
Parameter seeding for the Gaussian HMM.

Means and variances come from a KMeans partition of the (1-D) series;
the transition matrix from a uniform or diagonal-dominant (sticky) prior.
The RNG is always passed in explicitly so a seed fully determines the
initial parameters.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils import check_random_state

from ..config import (
    REGIME_HMM_PERSISTENCE,
    REGIME_KMEANS_N_INIT,
    REGIME_MIN_OBS_PER_STATE,
    REGIME_RANDOM_STATE,
    REGIME_TRANSITION_INIT,
    REGIME_VARIANCE_FLOOR,
)
from .errors import InputError
from .hmm import ROW_SUM_TOL, HMMParams

logger = logging.getLogger(__name__)

RandomStateLike = Union[None, int, np.random.RandomState]


@dataclass(frozen=True)
class Observations:
    """A cleaned observation sequence and the index labels it kept."""
    values: np.ndarray
    index: pd.Index

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def as_series(self, name: Optional[str] = None) -> pd.Series:
        return pd.Series(self.values, index=self.index, name=name)


def clean_observations(series) -> Observations:
    """Drop NaNs and reject infinities, keeping the surviving index labels.

    Accepts a ``pd.Series`` (index preserved), or any 1-D array-like
    (positional ``RangeIndex`` over the original positions).
    """
    if isinstance(series, pd.DataFrame):
        if series.shape[1] != 1:
            raise InputError("expected a univariate series, got a multi-column DataFrame")
        series = series.iloc[:, 0]
    if isinstance(series, pd.Series):
        s = pd.to_numeric(series, errors="coerce").astype(float)
    else:
        arr = np.asarray(series, dtype=np.float64)
        if arr.ndim == 2 and 1 in arr.shape:
            arr = arr.reshape(-1)
        if arr.ndim != 1:
            raise InputError(f"expected a 1-D observation sequence, got shape {arr.shape}")
        s = pd.Series(arr)

    values = s.to_numpy(dtype=np.float64)
    if np.any(np.isinf(values)):
        raise InputError("observation sequence contains infinite values")
    keep = ~np.isnan(values)
    if not keep.any():
        raise InputError("observation sequence is empty or all-NaN")
    dropped = int((~keep).sum())
    if dropped:
        logger.debug("Dropped %d NaN observations", dropped)
    return Observations(values=values[keep].copy(), index=s.index[keep])


def uniform_transition(n_states: int) -> np.ndarray:
    """Transition matrix with every entry ``1/K``."""
    return np.full((n_states, n_states), 1.0 / n_states)


def diagonal_transition(n_states: int, persistence: float = REGIME_HMM_PERSISTENCE) -> np.ndarray:
    """Sticky prior: ``persistence`` on the diagonal, the rest spread evenly."""
    if n_states == 1:
        return np.ones((1, 1))
    off = (1.0 - persistence) / (n_states - 1)
    trans = np.full((n_states, n_states), off)
    np.fill_diagonal(trans, persistence)
    return trans


def check_min_length(n_obs: int, n_states: int, min_obs_per_state: int = REGIME_MIN_OBS_PER_STATE) -> None:
    """Raise ``InputError`` unless ``n_obs >= min_obs_per_state * n_states``."""
    if not isinstance(n_states, (int, np.integer)) or n_states < 1:
        raise InputError(f"n_states must be a positive integer, got {n_states!r}")
    required = min_obs_per_state * n_states
    if n_obs < required:
        raise InputError(
            f"Insufficient observations for a {n_states}-state HMM: "
            f"got {n_obs}, need at least {required} ({min_obs_per_state} per state)"
        )


def _kmeans_seed(
    y: np.ndarray,
    n_states: int,
    rng: np.random.RandomState,
    variance_floor: float,
    n_init: int,
):
    """Cluster centers (descending) and within-cluster variances."""
    km = KMeans(n_clusters=n_states, n_init=n_init, random_state=rng)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=ConvergenceWarning)
        labels = km.fit_predict(y.reshape(-1, 1))
    centers = km.cluster_centers_.reshape(-1)

    order = np.argsort(-centers, kind="stable")
    overall_var = float(np.var(y))
    means = np.empty(n_states)
    variances = np.empty(n_states)
    for i, cluster in enumerate(order):
        members = y[labels == cluster]
        means[i] = centers[cluster]
        if members.size > 1:
            variances[i] = float(np.var(members))
        else:
            variances[i] = overall_var
    return means, np.maximum(variances, variance_floor)


def _check_override(name: str, value, n_states: int) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.shape != (n_states,):
        raise InputError(f"{name} must have {n_states} entries, got {arr.size}")
    if not np.all(np.isfinite(arr)):
        raise InputError(f"{name} contains non-finite values")
    return arr


def initialize_params(
    y: np.ndarray,
    n_states: int,
    transition_init: str = REGIME_TRANSITION_INIT,
    persistence: float = REGIME_HMM_PERSISTENCE,
    variance_floor: float = REGIME_VARIANCE_FLOOR,
    min_obs_per_state: int = REGIME_MIN_OBS_PER_STATE,
    random_state: RandomStateLike = REGIME_RANDOM_STATE,
    n_init: int = REGIME_KMEANS_N_INIT,
    init_transition: Optional[np.ndarray] = None,
    init_means: Optional[Sequence[float]] = None,
    init_vars: Optional[Sequence[float]] = None,
) -> HMMParams:
    """Seed HMM parameters for EM.

    Parameters
    ----------
    y : np.ndarray, shape (T,)
        Cleaned observation sequence (no NaN/inf).
    n_states : int
        Number of hidden states K.
    transition_init : {"diagonal", "uniform"}
        Prior used for Π when ``init_transition`` is not given.
    persistence : float
        Diagonal mass of the ``"diagonal"`` prior.
    variance_floor : float
        Lower bound applied to every seeded variance.
    min_obs_per_state : int
        Minimum-length policy: ``T >= min_obs_per_state * K``.
    random_state : int, RandomState or None
        Seed for KMeans.  The same seed on the same data always yields the
        same parameters.
    init_transition, init_means, init_vars : optional
        Caller overrides; each replaces the corresponding seeded value.

    Returns
    -------
    HMMParams
        Means in descending order unless ``init_means`` overrides them.

    Raises
    ------
    InputError
        If the sequence is too short or an override is malformed.
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    if y.size == 0 or not np.all(np.isfinite(y)):
        raise InputError("initialize_params expects a non-empty, finite sequence")
    check_min_length(y.size, n_states, min_obs_per_state)
    rng = check_random_state(random_state)

    need_clusters = init_means is None or init_vars is None
    means = variances = None
    if need_clusters:
        n_distinct = np.unique(y).size
        if n_distinct < n_states:
            logger.warning(
                "Series has %d distinct values for %d states; seeding from quantiles",
                n_distinct, n_states,
            )
            means = np.quantile(y, np.linspace(1.0, 0.0, n_states))
            variances = np.full(n_states, max(float(np.var(y)), variance_floor))
        else:
            means, variances = _kmeans_seed(y, n_states, rng, variance_floor, n_init)

    if init_means is not None:
        means = _check_override("init_means", init_means, n_states)
    if init_vars is not None:
        variances = _check_override("init_vars", init_vars, n_states)
        if np.any(variances <= 0):
            raise InputError("init_vars must be strictly positive")
        variances = np.maximum(variances, variance_floor)

    transition_init = str(getattr(transition_init, "value", transition_init))
    if init_transition is not None:
        trans = np.asarray(init_transition, dtype=np.float64)
        if trans.shape != (n_states, n_states):
            raise InputError(
                f"init_transition must have shape ({n_states}, {n_states}), got {trans.shape}"
            )
        if np.any(trans < 0) or np.any(np.abs(trans.sum(axis=1) - 1.0) > ROW_SUM_TOL):
            raise InputError("init_transition must be non-negative with rows summing to 1")
    elif transition_init == "uniform":
        trans = uniform_transition(n_states)
    elif transition_init == "diagonal":
        trans = diagonal_transition(n_states, persistence)
    else:
        raise InputError(f"transition_init must be 'diagonal' or 'uniform', got {transition_init!r}")

    return HMMParams(
        transition=trans,
        means=means,
        variances=variances,
        initial=np.full(n_states, 1.0 / n_states),
    )
