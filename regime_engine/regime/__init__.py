"""Regime modeling components."""

from .analyzer import (
    PosteriorIntervals,
    RegimeSummary,
    bootstrap_posterior_intervals,
    empirical_transition_matrix,
    labeled_transition_matrix,
    regime_statistics,
    run_lengths,
    summarize,
    transition_indices,
    transition_points,
)
from .decoder import DecodingMode, SmoothedDecoding, ViterbiDecoding, smoothed_decode, viterbi_decode
from .detector import FittedRegimeModel, MarkovRegimeDetector, RegimeOutput
from .errors import InputError, NotTrainedError, RegimeEngineError
from .estimators import (
    EstimationResult,
    LibraryBackedEstimator,
    ManualEMEstimator,
    RegimeEstimator,
    StopReason,
    make_estimator,
)
from .hmm import ForwardBackwardResult, HMMParams, forward_backward, state_entropy, viterbi
from .initializer import clean_observations, initialize_params

__all__ = [
    "DecodingMode",
    "EstimationResult",
    "FittedRegimeModel",
    "ForwardBackwardResult",
    "HMMParams",
    "InputError",
    "LibraryBackedEstimator",
    "ManualEMEstimator",
    "MarkovRegimeDetector",
    "NotTrainedError",
    "PosteriorIntervals",
    "RegimeEngineError",
    "RegimeEstimator",
    "RegimeOutput",
    "RegimeSummary",
    "SmoothedDecoding",
    "StopReason",
    "ViterbiDecoding",
    "bootstrap_posterior_intervals",
    "clean_observations",
    "empirical_transition_matrix",
    "forward_backward",
    "initialize_params",
    "labeled_transition_matrix",
    "make_estimator",
    "regime_statistics",
    "run_lengths",
    "smoothed_decode",
    "state_entropy",
    "summarize",
    "transition_indices",
    "transition_points",
    "viterbi",
    "viterbi_decode",
]
