"""
Markov-switching regime detector for a univariate series.

Pipeline: clean → KMeans seed + transition prior → EM (manual or
hmmlearn backend) → canonical mean ordering → Forward-Backward →
Viterbi or smoothed-posterior decoding → summary.

``MarkovRegimeDetector`` holds configuration only.  ``fit`` returns a
``FittedRegimeModel`` carrying the immutable parameters and everything
derived from them; decoding before ``fit`` raises ``NotTrainedError``.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..config import (
    REGIME_BOOTSTRAP_ALPHA,
    REGIME_BOOTSTRAP_BLOCK_LENGTH,
    REGIME_BOOTSTRAP_N,
    REGIME_DECODING_MODE,
    REGIME_DENSITY_FLOOR,
    REGIME_ESTIMATOR,
    REGIME_HMM_MAX_ITER,
    REGIME_HMM_PERSISTENCE,
    REGIME_HMM_STATES,
    REGIME_HMM_TOL,
    REGIME_KMEANS_N_INIT,
    REGIME_MIN_OBS_PER_STATE,
    REGIME_RANDOM_STATE,
    REGIME_STARVATION_THRESHOLD,
    REGIME_TRANSITION_INIT,
    REGIME_VARIANCE_FLOOR,
)
from .analyzer import (
    PosteriorIntervals,
    RegimeSummary,
    bootstrap_posterior_intervals,
    summarize,
)
from .decoder import DecodingMode, SmoothedDecoding, ViterbiDecoding, decode
from .errors import InputError, NotTrainedError
from .estimators import EstimationResult, RegimeEstimator, make_estimator
from .hmm import ForwardBackwardResult, HMMParams, forward_backward, resolve_regime_names, state_entropy
from .initializer import Observations, RandomStateLike, clean_observations, initialize_params

logger = logging.getLogger(__name__)

Decoding = Union[ViterbiDecoding, SmoothedDecoding]


@dataclass
class RegimeOutput:
    """Regime detection output: labels plus posterior diagnostics."""
    regime: pd.Series
    state: pd.Series
    confidence: pd.Series
    probabilities: pd.DataFrame
    uncertainty: pd.Series  # Entropy of posterior probabilities (nats)
    transition_matrix: pd.DataFrame
    summary: RegimeSummary
    estimation: EstimationResult
    mode: str


@dataclass(frozen=True)
class FittedRegimeModel:
    """A trained HMM bound to the observations it was estimated on."""
    params: HMMParams
    observations: Observations
    names: Tuple[str, ...]
    estimation: EstimationResult
    posterior_result: ForwardBackwardResult
    decoding_mode: DecodingMode = DecodingMode.VITERBI
    density_floor: float = REGIME_DENSITY_FLOOR
    series_name: Optional[str] = None
    refit_fn: Optional[Callable[..., HMMParams]] = field(default=None, repr=False, compare=False)
    _cache: Dict[DecodingMode, Decoding] = field(default_factory=dict, repr=False, compare=False)

    @property
    def n_states(self) -> int:
        return self.params.n_states

    @property
    def n_obs(self) -> int:
        return len(self.observations)

    @property
    def index(self) -> pd.Index:
        return self.observations.index

    @property
    def posterior(self) -> pd.DataFrame:
        """Smoothed posteriors P(s_t = k | y_1..T), columns = regime names."""
        return pd.DataFrame(self.posterior_result.smoothed, index=self.index, columns=list(self.names))

    @property
    def filtered(self) -> pd.DataFrame:
        """Filtered posteriors P(s_t = k | y_1..t)."""
        return pd.DataFrame(self.posterior_result.filtered, index=self.index, columns=list(self.names))

    @property
    def log_likelihood(self) -> float:
        return self.posterior_result.log_likelihood

    def decode(self, mode: Optional[Union[str, DecodingMode]] = None) -> Decoding:
        """Decode the training observations (default: the detector's mode)."""
        mode = self.decoding_mode if mode is None else DecodingMode.coerce(mode)
        if mode not in self._cache:
            self._cache[mode] = decode(
                self.observations.values, self.params, self.names,
                mode=mode, index=self.index, density_floor=self.density_floor,
            )
        return self._cache[mode]

    def viterbi(self) -> ViterbiDecoding:
        return self.decode(DecodingMode.VITERBI)

    def smoothed(self) -> SmoothedDecoding:
        return self.decode(DecodingMode.SMOOTHED_POSTERIOR)

    def regime_at(self, t: int, mode: Optional[Union[str, DecodingMode]] = None) -> Tuple[str, pd.Series]:
        """Regime name and smoothed posterior vector at position ``t``.

        Negative positions count from the end, as with list indexing.
        """
        if not -self.n_obs <= t < self.n_obs:
            raise IndexError(f"position {t} out of range for {self.n_obs} observations")
        decoding = self.decode(mode)
        posterior = self.posterior.iloc[t].rename(self.index[t])
        return str(decoding.labels.iloc[t]), posterior

    def summary(self, mode: Optional[Union[str, DecodingMode]] = None) -> RegimeSummary:
        return summarize(self, self.decode(mode))

    def refit(self, y: np.ndarray, random_state: RandomStateLike = None) -> HMMParams:
        """Re-estimate parameters from scratch on ``y`` with the same settings."""
        if self.refit_fn is None:
            raise NotTrainedError("refit is unavailable: model was not produced by a detector")
        return self.refit_fn(y, random_state)

    def bootstrap_intervals(
        self,
        n_boot: int = REGIME_BOOTSTRAP_N,
        block_length: int = REGIME_BOOTSTRAP_BLOCK_LENGTH,
        alpha: float = REGIME_BOOTSTRAP_ALPHA,
        random_state: Optional[int] = REGIME_RANDOM_STATE,
    ) -> PosteriorIntervals:
        return bootstrap_posterior_intervals(
            self,
            n_boot=n_boot,
            block_length=block_length,
            alpha=alpha,
            random_state=random_state,
            density_floor=self.density_floor,
        )

    def describe(self, mode: Optional[Union[str, DecodingMode]] = None) -> str:
        """Human-readable summary of the fit."""
        decoding = self.decode(mode)
        est = self.estimation
        title = f" '{self.series_name}'" if self.series_name else ""
        lines = [
            f"Markov regime model{title}: {self.n_states} states, {self.n_obs} observations",
            (
                f"EM ({est.backend}): {est.stop_reason.value} after {est.n_iter} iterations, "
                f"LL={est.log_likelihood:.4f}, |ΔLL|={est.log_likelihood_delta:.3e}"
            ),
            f"Decoding: {decoding.mode.value}",
            "",
            f"{'Regime':<12}{'mean':>12}{'variance':>12}{'count':>8}{'pct':>8}",
        ]
        counts = np.bincount(decoding.states, minlength=self.n_states)
        for k, name in enumerate(self.names):
            lines.append(
                f"{name:<12}{self.params.means[k]:>12.6f}{self.params.variances[k]:>12.6f}"
                f"{counts[k]:>8d}{100.0 * counts[k] / self.n_obs:>7.1f}%"
            )
        lines.append("")
        lines.append("Transition matrix (row = from, column = to):")
        width = max(10, max(len(n) for n in self.names) + 2)
        lines.append(" " * 12 + "".join(f"{n:>{width}}" for n in self.names))
        for k, name in enumerate(self.names):
            row = "".join(f"{p:>{width}.4f}" for p in self.params.transition[k])
            lines.append(f"{name:<12}{row}")
        lines.append("")
        lines.append(f"Current regime: {decoding.labels.iloc[-1]}")
        return "\n".join(lines)


class MarkovRegimeDetector:
    """Gaussian-HMM regime detector for one observation series.

    Parameters
    ----------
    n_states : int
        Number of hidden regimes K.
    max_iter, tol : int, float
        EM stopping rule: ``|ΔLL| < tol`` or ``max_iter`` iterations.
    decoding_mode : {"viterbi", "smoothed"}
        Default decoding used by ``decode``/``detect``.
    transition_init : {"diagonal", "uniform"}
        Transition prior for EM seeding.
    persistence : float
        Diagonal mass of the ``"diagonal"`` prior.
    variance_floor : float
        Floor on every variance, at seeding and after each M-step.
    min_obs_per_state : int
        Fitting requires at least ``min_obs_per_state * n_states`` observations.
    regime_names : sequence of str, optional
        Names for states in descending-mean order.
    estimator : {"manual", "library", "auto"} or RegimeEstimator
        EM backend, resolved once here.
    random_state : int or None
        Seed for KMeans seeding (and the bootstrap default).
    series_name : str, optional
        Label used in summaries and manifests.
    """

    def __init__(
        self,
        n_states: int = REGIME_HMM_STATES,
        max_iter: int = REGIME_HMM_MAX_ITER,
        tol: float = REGIME_HMM_TOL,
        decoding_mode: Union[str, DecodingMode] = REGIME_DECODING_MODE,
        transition_init: str = REGIME_TRANSITION_INIT,
        persistence: float = REGIME_HMM_PERSISTENCE,
        variance_floor: float = REGIME_VARIANCE_FLOOR,
        min_obs_per_state: int = REGIME_MIN_OBS_PER_STATE,
        regime_names: Optional[Sequence[str]] = None,
        estimator: Union[str, RegimeEstimator] = REGIME_ESTIMATOR,
        random_state: Optional[int] = REGIME_RANDOM_STATE,
        series_name: Optional[str] = None,
        density_floor: float = REGIME_DENSITY_FLOOR,
        starvation_threshold: float = REGIME_STARVATION_THRESHOLD,
        kmeans_n_init: int = REGIME_KMEANS_N_INIT,
    ):
        if isinstance(n_states, bool) or not isinstance(n_states, (int, np.integer)) or n_states < 1:
            raise InputError(f"n_states must be a positive integer, got {n_states!r}")
        if max_iter < 1:
            raise InputError(f"max_iter must be >= 1, got {max_iter}")
        if tol <= 0:
            raise InputError(f"tol must be positive, got {tol}")
        transition_init = str(getattr(transition_init, "value", transition_init))
        if transition_init not in ("diagonal", "uniform"):
            raise InputError(f"transition_init must be 'diagonal' or 'uniform', got {transition_init!r}")
        if not 0.0 <= persistence <= 1.0:
            raise InputError(f"persistence must be in [0, 1], got {persistence}")

        self.n_states = int(n_states)
        self.max_iter = int(max_iter)
        self.tol = float(tol)
        self.decoding_mode = DecodingMode.coerce(decoding_mode)
        self.transition_init = transition_init
        self.persistence = float(persistence)
        self.variance_floor = float(variance_floor)
        self.min_obs_per_state = int(min_obs_per_state)
        self.names = resolve_regime_names(self.n_states, regime_names)
        self.random_state = random_state
        self.series_name = series_name
        self.density_floor = float(density_floor)
        self.kmeans_n_init = int(kmeans_n_init)

        if isinstance(estimator, RegimeEstimator):
            self.estimator = estimator
        else:
            try:
                self.estimator = make_estimator(
                    estimator,
                    variance_floor=self.variance_floor,
                    starvation_threshold=starvation_threshold,
                    density_floor=self.density_floor,
                    random_state=random_state,
                )
            except ValueError as e:
                raise InputError(str(e)) from e

        self._fitted: Optional[FittedRegimeModel] = None

    # ── Training ────────────────────────────────────────────────────

    def _estimate(
        self,
        y: np.ndarray,
        random_state: RandomStateLike,
        init_transition: Optional[np.ndarray] = None,
        init_means: Optional[Sequence[float]] = None,
        init_vars: Optional[Sequence[float]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> EstimationResult:
        init = initialize_params(
            y,
            self.n_states,
            transition_init=self.transition_init,
            persistence=self.persistence,
            variance_floor=self.variance_floor,
            min_obs_per_state=self.min_obs_per_state,
            random_state=random_state,
            n_init=self.kmeans_n_init,
            init_transition=init_transition,
            init_means=init_means,
            init_vars=init_vars,
        )
        result = self.estimator.estimate(
            y, init, max_iter=self.max_iter, tol=self.tol, cancel_event=cancel_event,
        )
        params, _ = result.params.sorted_by_mean()
        return dataclasses.replace(result, params=params)

    def _refit(self, y: np.ndarray, random_state: RandomStateLike = None) -> HMMParams:
        obs = clean_observations(y)
        return self._estimate(obs.values, random_state).params

    def fit(
        self,
        series,
        init_transition: Optional[np.ndarray] = None,
        init_means: Optional[Sequence[float]] = None,
        init_vars: Optional[Sequence[float]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FittedRegimeModel:
        """Estimate the HMM on ``series`` and return the trained model.

        NaNs are dropped (their index labels with them).  The returned
        states are ordered by descending mean, so for K=3 state 0 is
        "Bull" and state 2 is "Bear".

        Raises
        ------
        InputError
            Empty/all-NaN or non-finite input, too few observations, or a
            malformed override.
        """
        obs = clean_observations(series)
        name = self.series_name or (series.name if isinstance(series, pd.Series) else None)
        logger.info(
            "Starting HMM training (%d states, %d observations)", self.n_states, len(obs),
        )

        result = self._estimate(
            obs.values,
            self.random_state,
            init_transition=init_transition,
            init_means=init_means,
            init_vars=init_vars,
            cancel_event=cancel_event,
        )
        fb = forward_backward(obs.values, result.params, self.density_floor)

        self._fitted = FittedRegimeModel(
            params=result.params,
            observations=obs,
            names=self.names,
            estimation=result,
            posterior_result=fb,
            decoding_mode=self.decoding_mode,
            density_floor=self.density_floor,
            series_name=None if name is None else str(name),
            refit_fn=self._refit,
        )
        logger.info(
            "Training finished: %s, LL=%.4f, means=%s",
            result.stop_reason.value, fb.log_likelihood,
            np.array2string(result.params.means, precision=4),
            extra={"metrics": result.to_dict()},
        )
        return self._fitted

    # ── Trained-state accessors ─────────────────────────────────────

    @property
    def is_fitted(self) -> bool:
        return self._fitted is not None

    @property
    def fitted(self) -> FittedRegimeModel:
        if self._fitted is None:
            raise NotTrainedError()
        return self._fitted

    @property
    def params(self) -> HMMParams:
        return self.fitted.params

    @property
    def regime_names(self) -> Tuple[str, ...]:
        return self.fitted.names

    def decode(self, mode: Optional[Union[str, DecodingMode]] = None) -> Decoding:
        return self.fitted.decode(mode)

    def summary(self, mode: Optional[Union[str, DecodingMode]] = None) -> RegimeSummary:
        return self.fitted.summary(mode)

    def detect(self, series, mode: Optional[Union[str, DecodingMode]] = None) -> RegimeOutput:
        """Fit on ``series``, decode and summarize in one call."""
        model = self.fit(series)
        decoding = model.decode(mode)
        posteriors = model.posterior
        state_idx = decoding.states
        confidence = pd.Series(
            posteriors.to_numpy()[np.arange(model.n_obs), state_idx],
            index=model.index,
            name="confidence",
        )
        return RegimeOutput(
            regime=decoding.labels,
            state=pd.Series(state_idx, index=model.index, name="state"),
            confidence=confidence,
            probabilities=posteriors,
            uncertainty=pd.Series(state_entropy(posteriors.to_numpy()), index=model.index, name="entropy"),
            transition_matrix=pd.DataFrame(
                np.array(model.params.transition), index=list(model.names), columns=list(model.names),
            ),
            summary=summarize(model, decoding),
            estimation=model.estimation,
            mode=decoding.mode.value,
        )

    def describe(self) -> str:
        return self.fitted.describe()

    def get_config(self) -> Dict[str, Any]:
        """Constructor settings, for manifests."""
        return {
            "n_states": self.n_states,
            "max_iter": self.max_iter,
            "tol": self.tol,
            "decoding_mode": self.decoding_mode.value,
            "transition_init": self.transition_init,
            "persistence": self.persistence,
            "variance_floor": self.variance_floor,
            "min_obs_per_state": self.min_obs_per_state,
            "regime_names": list(self.names),
            "estimator": self.estimator.name,
            "random_state": self.random_state,
            "density_floor": self.density_floor,
            "kmeans_n_init": self.kmeans_n_init,
        }
