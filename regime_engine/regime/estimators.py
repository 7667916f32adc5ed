"""
EM (Baum-Welch) estimators for the univariate Gaussian HMM.

Two interchangeable backends share the ``RegimeEstimator`` interface:

  - ``ManualEMEstimator``: in-repo Baum-Welch on top of ``hmm.forward_backward``.
  - ``LibraryBackedEstimator``: wraps ``hmmlearn.hmm.GaussianHMM``.

The backend is chosen once, by ``make_estimator``, when a detector is
constructed.  Both return an ``EstimationResult`` that always carries the
stop reason, iteration count and final log-likelihood delta, so a fit
that ran out of iterations is reported rather than raised.
"""
from __future__ import annotations

import importlib.util
import logging
import threading
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from ..config import (
    REGIME_DENSITY_FLOOR,
    REGIME_ESTIMATOR,
    REGIME_HMM_MAX_ITER,
    REGIME_HMM_TOL,
    REGIME_RANDOM_STATE,
    REGIME_STARVATION_THRESHOLD,
    REGIME_VARIANCE_FLOOR,
)
from .hmm import ForwardBackwardResult, HMMParams, forward_backward

logger = logging.getLogger(__name__)

# A log-likelihood drop larger than this between EM iterations is logged.
_MONOTONICITY_SLACK = 1e-6


class StopReason(Enum):
    """Why an EM run stopped."""
    CONVERGED = "converged"
    MAX_ITER = "max_iter"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EstimationResult:
    """Fitted parameters plus convergence bookkeeping.

    ``history`` holds the log-likelihood of each successive parameter
    record, ending with the LL of ``params``.
    """
    params: HMMParams
    n_iter: int
    log_likelihood: float
    log_likelihood_delta: float
    history: Tuple[float, ...]
    stop_reason: StopReason
    starved_updates: int = 0
    backend: str = "manual"

    @property
    def converged(self) -> bool:
        return self.stop_reason is StopReason.CONVERGED

    def to_dict(self) -> dict:
        """JSON-safe view; an undefined delta (fewer than two LLs) is None."""
        delta = self.log_likelihood_delta
        return {
            "backend": self.backend,
            "n_iter": self.n_iter,
            "log_likelihood": self.log_likelihood,
            "log_likelihood_delta": delta if np.isfinite(delta) else None,
            "stop_reason": self.stop_reason.value,
            "converged": self.converged,
            "starved_updates": self.starved_updates,
        }


def _delta(history: List[float]) -> float:
    if len(history) < 2:
        return float("nan")
    return float(abs(history[-1] - history[-2]))


def _log_completion(result: EstimationResult, tol: float) -> None:
    metrics = result.to_dict()
    if result.stop_reason is StopReason.MAX_ITER:
        logger.warning(
            "EM reached max_iter=%d without meeting tol=%g (|ΔLL|=%.3e, LL=%.4f)",
            result.n_iter, tol, result.log_likelihood_delta, result.log_likelihood,
            extra={"metrics": metrics},
        )
    elif result.stop_reason is StopReason.CANCELLED:
        logger.warning(
            "EM cancelled after %d iterations (LL=%.4f)",
            result.n_iter, result.log_likelihood,
            extra={"metrics": metrics},
        )
    else:
        logger.info(
            "EM converged after %d iterations (LL=%.4f, |ΔLL|=%.3e)",
            result.n_iter, result.log_likelihood, result.log_likelihood_delta,
            extra={"metrics": metrics},
        )


class RegimeEstimator(ABC):
    """Strategy interface: refine initial HMM parameters on a sequence."""

    name = "base"

    @abstractmethod
    def estimate(
        self,
        y: np.ndarray,
        init_params: HMMParams,
        max_iter: int = REGIME_HMM_MAX_ITER,
        tol: float = REGIME_HMM_TOL,
        cancel_event: Optional[threading.Event] = None,
    ) -> EstimationResult:
        """Run EM from ``init_params`` and return the fitted record."""


class ManualEMEstimator(RegimeEstimator):
    """Baum-Welch EM for a 1-D Gaussian HMM.

    Parameters
    ----------
    variance_floor : float
        Lower bound on every re-estimated variance.
    starvation_threshold : float
        A state whose total smoothed responsibility falls below this keeps
        its previous mean, variance and transition row.
    density_floor : float
        Emission density floor passed to Forward-Backward.
    """

    name = "manual"

    def __init__(
        self,
        variance_floor: float = REGIME_VARIANCE_FLOOR,
        starvation_threshold: float = REGIME_STARVATION_THRESHOLD,
        density_floor: float = REGIME_DENSITY_FLOOR,
    ):
        self.variance_floor = variance_floor
        self.starvation_threshold = starvation_threshold
        self.density_floor = density_floor

    def m_step(
        self,
        y: np.ndarray,
        params: HMMParams,
        fb: ForwardBackwardResult,
    ) -> Tuple[HMMParams, int]:
        """Closed-form re-estimation of Π, μ and σ² from one E-step.

        Returns the new record and the number of starved states whose
        previous parameters were kept.  π0 is not re-estimated.
        """
        gamma = fb.smoothed
        K = params.n_states
        occupancy = gamma.sum(axis=0)
        # Transitions leave from t = 1..T-1 only.
        departures = gamma[:-1].sum(axis=0)

        trans = params.transition.copy()
        means = params.means.copy()
        variances = params.variances.copy()
        starved = 0

        for k in range(K):
            if occupancy[k] < self.starvation_threshold:
                starved += 1
                logger.debug(
                    "State %d starved (Σγ=%.3e); keeping previous parameters", k, occupancy[k],
                )
                continue
            w = gamma[:, k]
            mu = float(w @ y / occupancy[k])
            var = float(w @ (y - mu) ** 2 / occupancy[k])
            means[k] = mu
            variances[k] = max(var, self.variance_floor)

            if departures[k] >= self.starvation_threshold:
                row = fb.xi_sum[k] / departures[k]
                row_sum = row.sum()
                if row_sum > 0 and np.all(np.isfinite(row)):
                    trans[k] = row / row_sum

        new_params = HMMParams(
            transition=trans,
            means=means,
            variances=variances,
            initial=params.initial,
        )
        return new_params, starved

    def estimate(
        self,
        y: np.ndarray,
        init_params: HMMParams,
        max_iter: int = REGIME_HMM_MAX_ITER,
        tol: float = REGIME_HMM_TOL,
        cancel_event: Optional[threading.Event] = None,
    ) -> EstimationResult:
        """Alternate E- and M-steps until ``|ΔLL| < tol`` or ``max_iter``.

        Convergence is tested right after each E-step, before another
        M-step, so the returned parameters are exactly the ones whose
        log-likelihood was last evaluated.
        """
        y = np.asarray(y, dtype=np.float64).reshape(-1)
        params = init_params
        history: List[float] = []
        stop = StopReason.MAX_ITER
        current_ll: Optional[float] = None
        starved_total = 0
        n_iter = 0

        for it in range(1, max_iter + 1):
            if cancel_event is not None and cancel_event.is_set():
                stop = StopReason.CANCELLED
                break

            fb = forward_backward(y, params, self.density_floor)
            current_ll = fb.log_likelihood
            if history and current_ll < history[-1] - _MONOTONICITY_SLACK:
                logger.debug(
                    "Log-likelihood decreased at iter %d: %.6f -> %.6f",
                    it, history[-1], current_ll,
                )
            history.append(current_ll)
            n_iter = it

            if it % 10 == 0:
                logger.debug("Iter %d: LL = %.4f (ΔLL = %.6f)", it, current_ll, _delta(history))

            if len(history) > 1 and abs(history[-1] - history[-2]) < tol:
                stop = StopReason.CONVERGED
                break

            params, starved = self.m_step(y, params, fb)
            starved_total += starved
            current_ll = None

        if current_ll is None:
            current_ll = forward_backward(y, params, self.density_floor).log_likelihood
            history.append(current_ll)

        result = EstimationResult(
            params=params,
            n_iter=n_iter,
            log_likelihood=float(current_ll),
            log_likelihood_delta=_delta(history),
            history=tuple(float(h) for h in history),
            stop_reason=stop,
            starved_updates=starved_total,
            backend=self.name,
        )
        _log_completion(result, tol)
        return result


class LibraryBackedEstimator(RegimeEstimator):
    """EM through ``hmmlearn.hmm.GaussianHMM``.

    The model is seeded with the initializer's parameters
    (``init_params=""``) and only Π, μ and σ² are re-estimated
    (``params="tmc"``), matching ``ManualEMEstimator``.  Cancellation is
    honoured only before the library call starts.
    """

    name = "library"

    def __init__(
        self,
        variance_floor: float = REGIME_VARIANCE_FLOOR,
        density_floor: float = REGIME_DENSITY_FLOOR,
        random_state: Optional[int] = REGIME_RANDOM_STATE,
    ):
        try:
            from hmmlearn.hmm import GaussianHMM
        except ImportError as exc:
            raise ImportError(
                "hmmlearn is required for the library-backed estimator. "
                "Install with: pip install hmmlearn"
            ) from exc
        self._hmm_cls = GaussianHMM
        self.variance_floor = variance_floor
        self.density_floor = density_floor
        self.random_state = random_state

    def estimate(
        self,
        y: np.ndarray,
        init_params: HMMParams,
        max_iter: int = REGIME_HMM_MAX_ITER,
        tol: float = REGIME_HMM_TOL,
        cancel_event: Optional[threading.Event] = None,
    ) -> EstimationResult:
        y = np.asarray(y, dtype=np.float64).reshape(-1)
        K = init_params.n_states

        if cancel_event is not None and cancel_event.is_set():
            ll = forward_backward(y, init_params, self.density_floor).log_likelihood
            result = EstimationResult(
                params=init_params,
                n_iter=0,
                log_likelihood=ll,
                log_likelihood_delta=float("nan"),
                history=(ll,),
                stop_reason=StopReason.CANCELLED,
                backend=self.name,
            )
            _log_completion(result, tol)
            return result

        model = self._hmm_cls(
            n_components=K,
            covariance_type="diag",
            min_covar=self.variance_floor,
            n_iter=max_iter,
            tol=tol,
            params="tmc",
            init_params="",
            random_state=self.random_state,
        )
        model.startprob_ = init_params.initial.copy()
        model.transmat_ = init_params.transition.copy()
        model.means_ = init_params.means.reshape(-1, 1).copy()
        model.covars_ = init_params.variances.reshape(-1, 1).copy()

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            model.fit(y.reshape(-1, 1))

        trans = np.asarray(model.transmat_, dtype=np.float64).copy()
        means = np.asarray(model.means_, dtype=np.float64).reshape(K, -1)[:, 0].copy()
        variances = np.asarray(model.covars_, dtype=np.float64).reshape(K, -1)[:, 0].copy()

        # Degenerate rows from the library: fall back to the seeded values.
        starved = 0
        for k in range(K):
            row = trans[k]
            if not np.all(np.isfinite(row)) or row.sum() <= 0:
                trans[k] = init_params.transition[k]
                starved += 1
            else:
                trans[k] = row / row.sum()
            if not np.isfinite(means[k]) or not np.isfinite(variances[k]):
                means[k] = init_params.means[k]
                variances[k] = init_params.variances[k]
                starved += 1
        variances = np.maximum(variances, self.variance_floor)

        params = HMMParams(
            transition=trans,
            means=means,
            variances=variances,
            initial=init_params.initial,
        )
        final_ll = forward_backward(y, params, self.density_floor).log_likelihood

        # monitor_.converged is also True when n_iter runs out, so test the
        # tolerance on its (last two) recorded log-likelihoods instead.
        monitored = [float(h) for h in model.monitor_.history]
        met_tol = len(monitored) >= 2 and abs(monitored[-1] - monitored[-2]) < tol
        stop = StopReason.CONVERGED if met_tol else StopReason.MAX_ITER
        history = monitored + [final_ll]

        result = EstimationResult(
            params=params,
            n_iter=int(model.monitor_.iter),
            log_likelihood=float(final_ll),
            log_likelihood_delta=_delta(history),
            history=tuple(history),
            stop_reason=stop,
            starved_updates=starved,
            backend=self.name,
        )
        _log_completion(result, tol)
        return result


def make_estimator(
    backend: str = REGIME_ESTIMATOR,
    variance_floor: float = REGIME_VARIANCE_FLOOR,
    starvation_threshold: float = REGIME_STARVATION_THRESHOLD,
    density_floor: float = REGIME_DENSITY_FLOOR,
    random_state: Optional[int] = REGIME_RANDOM_STATE,
) -> RegimeEstimator:
    """Build the EM backend named by ``backend``.

    ``"auto"`` resolves to ``"library"`` when ``hmmlearn`` is importable
    and to ``"manual"`` otherwise; the probe happens here, once.
    """
    name = str(getattr(backend, "value", backend)).lower()
    if name == "auto":
        name = "library" if importlib.util.find_spec("hmmlearn") is not None else "manual"
        logger.info("Estimator backend 'auto' resolved to '%s'", name)

    if name == "manual":
        return ManualEMEstimator(
            variance_floor=variance_floor,
            starvation_threshold=starvation_threshold,
            density_floor=density_floor,
        )
    if name == "library":
        seed = random_state if isinstance(random_state, (int, np.integer)) else None
        return LibraryBackedEstimator(
            variance_floor=variance_floor,
            density_floor=density_floor,
            random_state=seed,
        )
    raise ValueError(f"Unknown estimator backend {backend!r}; expected manual, library or auto")
