"""
Univariate Gaussian HMM core: parameter record, emission model,
Forward-Backward engine and Viterbi recursion.

This is a lightweight in-repo implementation.  All recursions run in the
log domain so long sequences do not underflow; outputs match the
raw-probability recursion whenever that one stays representable.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.special import logsumexp
from scipy.stats import norm

from ..config import REGIME_DENSITY_FLOOR, REGIME_NAMES_3
from .errors import InputError

# Floor applied before taking logs of transition / initial probabilities.
_PROB_FLOOR = 1e-300
# Added inside the entropy log so exact zeros contribute nothing.
ENTROPY_EPS = 1e-12
ROW_SUM_TOL = 1e-6


def _readonly(a: np.ndarray) -> np.ndarray:
    """Return a float64 copy of ``a`` that cannot be written to."""
    out = np.array(a, dtype=np.float64, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class HMMParams:
    """Immutable parameter record of a K-state univariate Gaussian HMM.

    Attributes
    ----------
    transition : np.ndarray, shape (K, K)
        Row-stochastic transition matrix, ``transition[i, j] = P(s_t=j | s_{t-1}=i)``.
    means : np.ndarray, shape (K,)
        Per-state emission mean.
    variances : np.ndarray, shape (K,)
        Per-state emission variance, strictly positive.
    initial : np.ndarray, shape (K,)
        Initial-state distribution.

    Arrays are stored as read-only copies; "updating" a model means
    building a new record.
    """
    transition: np.ndarray
    means: np.ndarray
    variances: np.ndarray
    initial: np.ndarray

    def __post_init__(self):
        trans = _readonly(self.transition)
        means = _readonly(self.means).reshape(-1)
        variances = _readonly(self.variances).reshape(-1)
        initial = _readonly(self.initial).reshape(-1)
        k = means.shape[0]

        if k < 1:
            raise InputError("HMMParams needs at least one state")
        if trans.shape != (k, k):
            raise InputError(f"transition must have shape ({k}, {k}), got {trans.shape}")
        if variances.shape != (k,) or initial.shape != (k,):
            raise InputError("means, variances and initial must all have length K")
        for name, arr in (("transition", trans), ("means", means),
                          ("variances", variances), ("initial", initial)):
            if not np.all(np.isfinite(arr)):
                raise InputError(f"{name} contains non-finite values")
        if np.any(trans < 0) or np.any(initial < 0):
            raise InputError("transition and initial probabilities must be non-negative")
        if np.any(np.abs(trans.sum(axis=1) - 1.0) > ROW_SUM_TOL):
            raise InputError(f"transition rows must sum to 1, got {trans.sum(axis=1)}")
        if abs(initial.sum() - 1.0) > ROW_SUM_TOL:
            raise InputError(f"initial distribution must sum to 1, got {initial.sum()}")
        if np.any(variances <= 0):
            raise InputError("variances must be strictly positive")

        object.__setattr__(self, "transition", trans)
        object.__setattr__(self, "means", means)
        object.__setattr__(self, "variances", variances)
        object.__setattr__(self, "initial", initial)

    @property
    def n_states(self) -> int:
        """Number of hidden states K."""
        return int(self.means.shape[0])

    @property
    def std(self) -> np.ndarray:
        """Per-state emission standard deviation."""
        return np.sqrt(self.variances)

    def reordered(self, order: Sequence[int]) -> "HMMParams":
        """Return a new record whose state ``i`` is this record's state ``order[i]``."""
        idx = np.asarray(order, dtype=int)
        if sorted(idx.tolist()) != list(range(self.n_states)):
            raise InputError(f"order must be a permutation of 0..{self.n_states - 1}")
        return HMMParams(
            transition=self.transition[np.ix_(idx, idx)],
            means=self.means[idx],
            variances=self.variances[idx],
            initial=self.initial[idx],
        )

    def sorted_by_mean(self) -> Tuple["HMMParams", np.ndarray]:
        """Canonical ordering: state 0 has the highest mean.

        Returns the reordered record and the permutation applied.
        """
        order = np.argsort(-self.means, kind="stable")
        return self.reordered(order), order


def default_regime_names(n_states: int) -> Tuple[str, ...]:
    """Names bound to states sorted by descending mean.

    K=3 uses the market convention (highest mean "Bull", middle "Sideways",
    lowest "Bear"); any other K gets ``State_1 .. State_K``.
    """
    if n_states == 3:
        return tuple(REGIME_NAMES_3)
    return tuple(f"State_{i + 1}" for i in range(n_states))


def resolve_regime_names(n_states: int, names: Optional[Sequence[str]] = None) -> Tuple[str, ...]:
    """Validate caller-supplied names or fall back to the default convention."""
    if names is None:
        return default_regime_names(n_states)
    names = tuple(str(n) for n in names)
    if len(names) != n_states:
        raise InputError(f"regime_names must have {n_states} entries, got {len(names)}")
    if len(set(names)) != n_states:
        raise InputError(f"regime_names must be distinct, got {names}")
    return names


# ── Emission model ───────────────────────────────────────────────────


def emission_log_density(
    y: np.ndarray,
    means: np.ndarray,
    variances: np.ndarray,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> np.ndarray:
    """Gaussian log-density of each observation under each state, shape (T, K).

    Densities are floored at ``density_floor`` so an observation far from
    every state never produces ``-inf``.
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1, 1)
    mu = np.asarray(means, dtype=np.float64).reshape(1, -1)
    sd = np.sqrt(np.asarray(variances, dtype=np.float64)).reshape(1, -1)
    log_b = norm.logpdf(y, loc=mu, scale=sd)
    return np.maximum(log_b, np.log(density_floor))


def emission_density(
    y: np.ndarray,
    means: np.ndarray,
    variances: np.ndarray,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> np.ndarray:
    """Emission matrix ``B[t, i]`` (raw densities)."""
    return np.exp(emission_log_density(y, means, variances, density_floor))


# ── Forward-Backward ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ForwardBackwardResult:
    """Outputs of one Forward-Backward pass.

    ``filtered`` and ``smoothed`` are (T, K) with rows summing to 1;
    ``xi_sum[i, j]`` is the expected number of i→j transitions.
    """
    log_alpha: np.ndarray
    log_beta: np.ndarray
    filtered: np.ndarray
    smoothed: np.ndarray
    xi_sum: np.ndarray
    log_likelihood: float


def _log_probs(params: HMMParams) -> Tuple[np.ndarray, np.ndarray]:
    log_pi = np.log(np.maximum(params.initial, _PROB_FLOOR))
    log_A = np.log(np.maximum(params.transition, _PROB_FLOOR))
    return log_pi, log_A


def _normalize_log_rows(log_m: np.ndarray) -> np.ndarray:
    out = np.exp(log_m - logsumexp(log_m, axis=1, keepdims=True))
    out /= out.sum(axis=1, keepdims=True)
    return out


def forward_backward(
    y: np.ndarray,
    params: HMMParams,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> ForwardBackwardResult:
    """Compute filtered/smoothed posteriors, transition responsibilities and LL.

    Recursions (log domain):
        log α_1 = log π0 + log B_1
        log α_t(j) = log B_t(j) + logsumexp_i(log α_{t-1}(i) + log Π(i, j))
        log β_T = 0
        log β_t(i) = logsumexp_j(log Π(i, j) + log B_{t+1}(j) + log β_{t+1}(j))
        LL = logsumexp_i log α_T(i)
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    T = y.shape[0]
    if T == 0:
        raise InputError("forward_backward needs at least one observation")
    K = params.n_states

    log_b = emission_log_density(y, params.means, params.variances, density_floor)
    log_pi, log_A = _log_probs(params)

    # Forward pass
    log_alpha = np.empty((T, K))
    log_alpha[0] = log_pi + log_b[0]
    for t in range(1, T):
        log_alpha[t] = log_b[t] + logsumexp(log_alpha[t - 1][:, None] + log_A, axis=0)

    loglik = float(logsumexp(log_alpha[-1]))

    # Backward pass
    log_beta = np.zeros((T, K))
    for t in range(T - 2, -1, -1):
        log_beta[t] = logsumexp(log_A + (log_b[t + 1] + log_beta[t + 1])[None, :], axis=1)

    filtered = _normalize_log_rows(log_alpha)
    smoothed = _normalize_log_rows(log_alpha + log_beta)

    if T > 1:
        log_xi = (
            log_alpha[:-1, :, None]
            + log_A[None, :, :]
            + (log_b[1:] + log_beta[1:])[:, None, :]
            - loglik
        )
        xi_sum = np.exp(log_xi).sum(axis=0)
    else:
        xi_sum = np.zeros((K, K))

    return ForwardBackwardResult(
        log_alpha=log_alpha,
        log_beta=log_beta,
        filtered=filtered,
        smoothed=smoothed,
        xi_sum=xi_sum,
        log_likelihood=loglik,
    )


# ── Viterbi ──────────────────────────────────────────────────────────


def viterbi(
    y: np.ndarray,
    params: HMMParams,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> Tuple[np.ndarray, float]:
    """Return the most likely state sequence and its joint log-probability.

    Parameters
    ----------
    y : np.ndarray, shape (T,)
        Observation sequence.
    params : HMMParams
        Model parameters.

    Returns
    -------
    path : np.ndarray of int, shape (T,)
        Single best global state path.
    log_probability : float
        ``max_s log p(y, s)``.
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    T = y.shape[0]
    if T == 0:
        raise InputError("viterbi needs at least one observation")
    K = params.n_states

    log_b = emission_log_density(y, params.means, params.variances, density_floor)
    log_pi, log_A = _log_probs(params)

    # --- forward (delta) pass ---
    delta = np.zeros((T, K))                   # best log-prob ending in state k
    psi = np.zeros((T, K), dtype=int)          # back-pointers

    delta[0] = log_pi + log_b[0]
    for t in range(1, T):
        # candidate[j, k] = delta[t-1, j] + log_A[j, k]
        candidate = delta[t - 1][:, None] + log_A
        psi[t] = np.argmax(candidate, axis=0)
        delta[t] = candidate[psi[t], np.arange(K)] + log_b[t]

    # --- backtracking pass ---
    path = np.zeros(T, dtype=int)
    path[-1] = int(np.argmax(delta[-1]))
    for t in range(T - 2, -1, -1):
        path[t] = psi[t + 1, path[t + 1]]

    return path, float(delta[-1, path[-1]])


# ── Diagnostics ──────────────────────────────────────────────────────


def state_entropy(posteriors: np.ndarray, eps: float = ENTROPY_EPS) -> np.ndarray:
    """Shannon entropy (nats) of each posterior row, clipped to ``[0, ln K]``."""
    p = np.asarray(posteriors, dtype=np.float64)
    if p.ndim != 2:
        raise InputError("posteriors must be a (T, K) matrix")
    k = p.shape[1]
    h = -np.sum(p * np.log(p + eps), axis=1)
    return np.clip(h, 0.0, np.log(k) if k > 1 else 0.0)
