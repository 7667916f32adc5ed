"""Tests for posterior analysis: runs, transitions, statistics, bootstrap bands."""
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest


NAMES = ("Bull", "Sideways", "Bear")


@pytest.mark.unit
class TestRunsAndTransitions:
    """Run-length encoding of decoded paths."""

    def test_run_lengths(self):
        from regime_engine.regime.analyzer import run_lengths

        runs = run_lengths(np.array([0, 0, 1, 1, 1, 0]))
        assert runs["state"].tolist() == [0, 1, 0]
        assert runs["start"].tolist() == [0, 2, 5]
        assert runs["length"].tolist() == [2, 3, 1]

    def test_run_lengths_single_regime(self):
        from regime_engine.regime.analyzer import run_lengths

        runs = run_lengths(np.zeros(7, dtype=int))
        assert len(runs) == 1
        assert runs["length"].iloc[0] == 7

    def test_transition_indices_mark_first_step_of_new_regime(self):
        from regime_engine.regime.analyzer import transition_indices

        np.testing.assert_array_equal(transition_indices(np.array([0, 0, 1, 1, 1, 0])), [2, 5])
        assert transition_indices(np.array([2])).size == 0

    def test_transition_points_named(self):
        from regime_engine.regime.analyzer import transition_points

        idx = pd.date_range("2024-03-01", periods=6, freq="D")
        points = transition_points(np.array([0, 0, 2, 2, 1, 1]), idx, NAMES)

        assert points["position"].tolist() == [2, 4]
        assert points["timestamp"].tolist() == [idx[2], idx[4]]
        assert points["from_regime"].tolist() == ["Bull", "Bear"]
        assert points["to_regime"].tolist() == ["Bear", "Sideways"]


@pytest.mark.unit
class TestRegimeStatistics:
    """Per-regime occupancy and moments."""

    def test_counts_and_moments(self):
        from regime_engine.regime.analyzer import regime_statistics

        y = np.array([1.0, 3.0, -1.0, -3.0, 0.0, 0.0])
        states = np.array([0, 0, 2, 2, 1, 1])
        stats = regime_statistics(y, states, NAMES)

        assert stats.loc["Bull", "count"] == 2
        assert stats.loc["Bull", "mean"] == pytest.approx(2.0)
        assert stats.loc["Bull", "variance"] == pytest.approx(2.0)
        assert stats.loc["Bear", "mean"] == pytest.approx(-2.0)
        np.testing.assert_allclose(stats["occupancy_pct"].sum(), 100.0)
        assert stats.loc["Sideways", "avg_duration"] == pytest.approx(2.0)
        assert "avg_posterior" not in stats.columns

    def test_absent_regime_reported_as_nan(self):
        from regime_engine.regime.analyzer import regime_statistics

        stats = regime_statistics(np.array([1.0, 2.0, 3.0]), np.array([0, 0, 0]), NAMES)
        assert stats.loc["Bear", "count"] == 0
        assert np.isnan(stats.loc["Bear", "mean"])
        assert np.isnan(stats.loc["Bear", "avg_duration"])

    def test_avg_posterior_included(self):
        from regime_engine.regime.analyzer import regime_statistics

        post = np.array([[0.8, 0.1, 0.1], [0.6, 0.3, 0.1]])
        stats = regime_statistics(np.array([1.0, 2.0]), np.array([0, 0]), NAMES, post)
        assert stats.loc["Bull", "avg_posterior"] == pytest.approx(0.7)

    def test_length_mismatch_rejected(self):
        from regime_engine.regime.analyzer import regime_statistics
        from regime_engine.regime.errors import InputError

        with pytest.raises(InputError):
            regime_statistics(np.zeros(3), np.zeros(4, dtype=int), NAMES)


@pytest.mark.unit
class TestTransitionMatrices:
    """Estimated and empirical transition tables."""

    def test_empirical_rows_normalized(self):
        from regime_engine.regime.analyzer import empirical_transition_matrix

        emp = empirical_transition_matrix(np.array([0, 0, 1, 1, 1, 0]), NAMES)
        np.testing.assert_allclose(emp.loc["Bull"].to_numpy(), [0.5, 0.5, 0.0])
        np.testing.assert_allclose(emp.loc["Sideways"].to_numpy(), [1 / 3, 2 / 3, 0.0])
        # Bear never departs
        np.testing.assert_allclose(emp.loc["Bear"].to_numpy(), [0.0, 0.0, 0.0])

    def test_labeled_matrix(self, three_state_params):
        from regime_engine.regime.analyzer import labeled_transition_matrix

        table = labeled_transition_matrix(three_state_params, NAMES)
        assert list(table.index) == list(NAMES)
        assert table.loc["Bull", "Bull"] == pytest.approx(0.9)


@pytest.mark.unit
class TestBlockResample:
    """Moving-block bootstrap sampler."""

    def test_same_length_and_drawn_from_input(self):
        from regime_engine.regime.analyzer import block_resample

        y = np.arange(53, dtype=float)
        sample = block_resample(y, 10, np.random.RandomState(0))
        assert sample.shape == y.shape
        assert set(sample.tolist()) <= set(y.tolist())

    def test_blocks_are_contiguous(self):
        from regime_engine.regime.analyzer import block_resample

        y = np.arange(40, dtype=float)
        sample = block_resample(y, 10, np.random.RandomState(1))
        for block in sample.reshape(4, 10):
            np.testing.assert_array_equal(np.diff(block), 1.0)


@pytest.mark.integration
class TestSummaryAndBootstrap:
    """Summary and bootstrap bands on a fitted model."""

    def test_summary_fields(self, three_regime_series):
        from regime_engine.regime.detector import MarkovRegimeDetector

        model = MarkovRegimeDetector(n_states=3, random_state=0).fit(three_regime_series)
        summary = model.summary()

        assert summary.current_regime == "Sideways"
        assert sum(summary.current_posterior.values()) == pytest.approx(1.0)
        assert summary.convergence["stop_reason"] == "converged"
        assert summary.transitions["position"].tolist() == [100, 200]
        assert list(summary.regime_stats.index) == list(NAMES)

        payload = summary.to_dict()
        assert payload["current_regime"] == "Sideways"
        assert payload["transitions"][0]["from_regime"] == "Bull"
        assert set(payload["regime_stats"]) == set(NAMES)

    def test_bootstrap_band_ordering(self, three_regime_series):
        from regime_engine.regime.detector import MarkovRegimeDetector

        model = MarkovRegimeDetector(n_states=3, random_state=0).fit(three_regime_series)
        bands = model.bootstrap_intervals(n_boot=5, block_length=20, random_state=3)

        assert bands.n_successful + bands.n_failed == 5
        assert bands.n_successful >= 1
        assert bands.lower.shape == (300, 3)
        assert list(bands.upper.columns) == list(NAMES)
        assert (bands.lower.to_numpy() <= bands.median.to_numpy() + 1e-12).all()
        assert (bands.median.to_numpy() <= bands.upper.to_numpy() + 1e-12).all()
        assert ((bands.lower.to_numpy() >= 0) & (bands.upper.to_numpy() <= 1 + 1e-12)).all()

    def test_bootstrap_bands_have_width_on_overlapping_regimes(self, overlapping_regime_series):
        from regime_engine.regime.detector import MarkovRegimeDetector

        model = MarkovRegimeDetector(n_states=2).fit(overlapping_regime_series)
        bands = model.bootstrap_intervals(n_boot=20, random_state=1)

        width = (bands.upper - bands.lower).to_numpy()
        assert bands.n_successful == 20
        assert width.max() > 0
        assert (width >= -1e-12).all()

    def test_bootstrap_settings_validated(self, three_regime_series):
        from regime_engine.regime.detector import MarkovRegimeDetector
        from regime_engine.regime.errors import InputError

        model = MarkovRegimeDetector(n_states=3).fit(three_regime_series)
        with pytest.raises(InputError, match="alpha"):
            model.bootstrap_intervals(n_boot=2, alpha=1.5)
        with pytest.raises(InputError, match="n_boot"):
            model.bootstrap_intervals(n_boot=0)
