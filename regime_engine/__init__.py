"""Markov-switching regime detection for univariate financial series."""

__version__ = "0.1.0"
