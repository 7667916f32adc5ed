"""Exceptions raised by the regime engine.

Numeric degeneracies (collapsing variances, starved states) are not
errors: they are healed in place with floors and parameter retention.
Convergence status is reported on ``EstimationResult``, never raised.
"""


class RegimeEngineError(Exception):
    """Base class for regime engine errors."""


class InputError(RegimeEngineError, ValueError):
    """The observation sequence cannot support the requested model.

    Raised for sequences that are empty or all-NaN after cleaning, contain
    infinite values, are shorter than ``min_obs_per_state * n_states``, or
    for malformed initial-parameter overrides.
    """


class NotTrainedError(RegimeEngineError, RuntimeError):
    """Decoding or diagnostics were requested before ``fit``."""

    def __init__(self, message: str = "model not estimated; call fit() first"):
        super().__init__(message)
