"""
State decoding for a trained HMM.

Two modes:
  - ``VITERBI``: single best global path via max-product recursion.
  - ``SMOOTHED_POSTERIOR``: per-step argmax of the smoothed posterior,
    plus confidence (max posterior) and Shannon entropy.

Smoothed decoding can flip on a single outlier; Viterbi, under a
persistent transition matrix, generally does not.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config import REGIME_DENSITY_FLOOR
from .errors import InputError
from .hmm import HMMParams, forward_backward, state_entropy, viterbi


class DecodingMode(Enum):
    VITERBI = "viterbi"
    SMOOTHED_POSTERIOR = "smoothed"

    @classmethod
    def coerce(cls, mode: Union[str, "DecodingMode"]) -> "DecodingMode":
        """Accept an enum member or its string value (``"smoothed_posterior"`` too)."""
        if isinstance(mode, cls):
            return mode
        key = str(getattr(mode, "value", mode)).lower()
        if key == "smoothed_posterior":
            key = "smoothed"
        for member in cls:
            if member.value == key:
                return member
        raise InputError(f"Unknown decoding mode {mode!r}; expected 'viterbi' or 'smoothed'")


@dataclass(frozen=True)
class ViterbiDecoding:
    """Most likely global state path."""
    states: np.ndarray
    labels: pd.Series
    log_probability: float
    mode: DecodingMode = DecodingMode.VITERBI

    @property
    def n_obs(self) -> int:
        return int(self.states.shape[0])


@dataclass(frozen=True)
class SmoothedDecoding:
    """Per-step MAP states with full posterior diagnostics."""
    states: np.ndarray
    labels: pd.Series
    posteriors: pd.DataFrame
    filtered: pd.DataFrame
    confidence: pd.Series
    entropy: pd.Series
    log_likelihood: float
    mode: DecodingMode = DecodingMode.SMOOTHED_POSTERIOR

    @property
    def n_obs(self) -> int:
        return int(self.states.shape[0])


def _resolve_index(n_obs: int, index: Optional[pd.Index]) -> pd.Index:
    if index is None:
        return pd.RangeIndex(n_obs)
    if len(index) != n_obs:
        raise InputError(f"index has {len(index)} labels for {n_obs} observations")
    return index


def _labels(states: np.ndarray, names: Sequence[str], index: pd.Index) -> pd.Series:
    lookup = np.asarray(list(names), dtype=object)
    return pd.Series(lookup[states], index=index, name="regime")


def viterbi_decode(
    y: np.ndarray,
    params: HMMParams,
    names: Sequence[str],
    index: Optional[pd.Index] = None,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> ViterbiDecoding:
    """Decode ``y`` with the Viterbi algorithm."""
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    index = _resolve_index(y.shape[0], index)
    path, log_prob = viterbi(y, params, density_floor)
    return ViterbiDecoding(
        states=path,
        labels=_labels(path, names, index),
        log_probability=log_prob,
    )


def smoothed_decode(
    y: np.ndarray,
    params: HMMParams,
    names: Sequence[str],
    index: Optional[pd.Index] = None,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> SmoothedDecoding:
    """Decode ``y`` by argmax of the smoothed posterior at each step.

    Ties resolve to the lowest state index, i.e. the higher-mean state.
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    index = _resolve_index(y.shape[0], index)
    columns = list(names)

    fb = forward_backward(y, params, density_floor)
    gamma = fb.smoothed
    states = np.argmax(gamma, axis=1).astype(int)

    return SmoothedDecoding(
        states=states,
        labels=_labels(states, names, index),
        posteriors=pd.DataFrame(gamma, index=index, columns=columns),
        filtered=pd.DataFrame(fb.filtered, index=index, columns=columns),
        confidence=pd.Series(gamma.max(axis=1), index=index, name="confidence"),
        entropy=pd.Series(state_entropy(gamma), index=index, name="entropy"),
        log_likelihood=fb.log_likelihood,
    )


def decode(
    y: np.ndarray,
    params: HMMParams,
    names: Sequence[str],
    mode: Union[str, DecodingMode] = DecodingMode.VITERBI,
    index: Optional[pd.Index] = None,
    density_floor: float = REGIME_DENSITY_FLOOR,
) -> Union[ViterbiDecoding, SmoothedDecoding]:
    """Dispatch to ``viterbi_decode`` or ``smoothed_decode``."""
    mode = DecodingMode.coerce(mode)
    if mode is DecodingMode.VITERBI:
        return viterbi_decode(y, params, names, index, density_floor)
    return smoothed_decode(y, params, names, index, density_floor)
