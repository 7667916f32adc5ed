"""Tests for observation cleaning and HMM parameter seeding.

Verifies:
  - NaNs are dropped with their index labels; inf and all-NaN are rejected
  - Minimum-length policy: T = 10·K accepted, T = 10·K − 1 rejected
  - KMeans seeding is deterministic under a fixed seed and mean-ordered
  - Caller overrides replace the seeded values and are validated
  - Degenerate (constant) input seeds from quantiles without failing
"""
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest


@pytest.mark.unit
class TestCleanObservations:
    """Input cleaning."""

    def test_nan_dropped_with_index(self):
        from regime_engine.regime.initializer import clean_observations

        idx = pd.date_range("2024-01-01", periods=5, freq="D")
        s = pd.Series([1.0, np.nan, 2.0, np.nan, 3.0], index=idx)
        obs = clean_observations(s)

        np.testing.assert_array_equal(obs.values, [1.0, 2.0, 3.0])
        assert list(obs.index) == [idx[0], idx[2], idx[4]]
        assert len(obs) == 3

    def test_plain_array_gets_positional_index(self):
        from regime_engine.regime.initializer import clean_observations

        obs = clean_observations(np.array([[0.1], [np.nan], [0.3]]))
        np.testing.assert_array_equal(obs.values, [0.1, 0.3])
        assert list(obs.index) == [0, 2]

    def test_single_column_frame_accepted(self):
        from regime_engine.regime.initializer import clean_observations

        obs = clean_observations(pd.DataFrame({"x": [1.0, 2.0]}))
        np.testing.assert_array_equal(obs.values, [1.0, 2.0])

    def test_multi_column_frame_rejected(self):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import clean_observations

        with pytest.raises(InputError, match="univariate"):
            clean_observations(pd.DataFrame({"a": [1.0], "b": [2.0]}))

    def test_infinite_values_rejected(self):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import clean_observations

        with pytest.raises(InputError, match="infinite"):
            clean_observations(pd.Series([1.0, np.inf, 2.0]))

    @pytest.mark.parametrize("values", [[], [np.nan, np.nan]])
    def test_empty_or_all_nan_rejected(self, values):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import clean_observations

        with pytest.raises(InputError, match="empty or all-NaN"):
            clean_observations(pd.Series(values, dtype=float))


@pytest.mark.unit
class TestTransitionPriors:
    """Uniform and diagonal-dominant transition seeds."""

    def test_uniform(self):
        from regime_engine.regime.initializer import uniform_transition

        np.testing.assert_allclose(uniform_transition(4), np.full((4, 4), 0.25))

    def test_diagonal_rows_sum_to_one(self):
        from regime_engine.regime.initializer import diagonal_transition

        trans = diagonal_transition(3, 0.9)
        np.testing.assert_allclose(np.diag(trans), 0.9)
        np.testing.assert_allclose(trans[0, 1], 0.05)
        np.testing.assert_allclose(trans.sum(axis=1), 1.0)

    def test_single_state(self):
        from regime_engine.regime.initializer import diagonal_transition

        np.testing.assert_array_equal(diagonal_transition(1, 0.9), [[1.0]])


@pytest.mark.unit
class TestMinimumLength:
    """T must be at least min_obs_per_state · K."""

    def test_boundary_length_accepted(self):
        from regime_engine.regime.initializer import initialize_params

        rng = np.random.RandomState(1)
        params = initialize_params(rng.normal(size=30), n_states=3)
        assert params.n_states == 3

    def test_one_below_boundary_rejected(self):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import initialize_params

        rng = np.random.RandomState(1)
        with pytest.raises(InputError, match="Insufficient observations"):
            initialize_params(rng.normal(size=29), n_states=3)

    @pytest.mark.parametrize("n_states", [0, -1, 2.5])
    def test_invalid_state_count(self, n_states):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import check_min_length

        with pytest.raises(InputError, match="positive integer"):
            check_min_length(100, n_states)


@pytest.mark.unit
class TestKMeansSeeding:
    """Cluster-based seeding of means and variances."""

    def test_means_descending_and_near_segments(self, three_regime_series):
        from regime_engine.regime.initializer import initialize_params

        params = initialize_params(three_regime_series.to_numpy(), n_states=3)
        assert np.all(np.diff(params.means) < 0)
        np.testing.assert_allclose(params.means, [2.0, 0.0, -2.0], atol=0.15)
        assert np.all(params.variances >= 1e-4)
        np.testing.assert_allclose(params.initial, 1.0 / 3.0)

    def test_same_seed_same_parameters(self, three_regime_series):
        from regime_engine.regime.initializer import initialize_params

        y = three_regime_series.to_numpy()
        a = initialize_params(y, n_states=3, random_state=123)
        b = initialize_params(y, n_states=3, random_state=123)
        np.testing.assert_array_equal(a.means, b.means)
        np.testing.assert_array_equal(a.variances, b.variances)

    def test_uniform_prior_selected(self, three_regime_series):
        from regime_engine.regime.initializer import initialize_params

        params = initialize_params(
            three_regime_series.to_numpy(), n_states=3, transition_init="uniform",
        )
        np.testing.assert_allclose(params.transition, np.full((3, 3), 1.0 / 3.0))

    def test_unknown_prior_rejected(self, three_regime_series):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import initialize_params

        with pytest.raises(InputError, match="transition_init"):
            initialize_params(three_regime_series.to_numpy(), n_states=3, transition_init="sticky")

    def test_constant_series_seeds_from_quantiles(self):
        from regime_engine.regime.initializer import initialize_params

        params = initialize_params(np.full(40, 0.5), n_states=3, variance_floor=1e-4)
        np.testing.assert_allclose(params.means, 0.5)
        np.testing.assert_allclose(params.variances, 1e-4)


@pytest.mark.unit
class TestOverrides:
    """Caller-supplied initial parameters."""

    def test_overrides_replace_seeded_values(self, three_regime_series):
        from regime_engine.regime.initializer import initialize_params

        trans = np.array([[0.8, 0.1, 0.1], [0.1, 0.8, 0.1], [0.1, 0.1, 0.8]])
        params = initialize_params(
            three_regime_series.to_numpy(),
            n_states=3,
            init_transition=trans,
            init_means=[1.5, 0.1, -1.5],
            init_vars=[0.2, 0.3, 0.4],
        )
        np.testing.assert_allclose(params.transition, trans)
        np.testing.assert_allclose(params.means, [1.5, 0.1, -1.5])
        np.testing.assert_allclose(params.variances, [0.2, 0.3, 0.4])

    def test_override_variances_floored(self, three_regime_series):
        from regime_engine.regime.initializer import initialize_params

        params = initialize_params(
            three_regime_series.to_numpy(), n_states=3,
            init_vars=[1e-8, 0.3, 0.4], variance_floor=1e-4,
        )
        assert params.variances[0] == pytest.approx(1e-4)

    def test_wrong_shape_transition_rejected(self, three_regime_series):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import initialize_params

        with pytest.raises(InputError, match="shape"):
            initialize_params(three_regime_series.to_numpy(), n_states=3, init_transition=np.eye(2))

    def test_non_stochastic_transition_rejected(self, three_regime_series):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import initialize_params

        with pytest.raises(InputError, match="rows summing to 1"):
            initialize_params(
                three_regime_series.to_numpy(), n_states=3, init_transition=np.full((3, 3), 0.5),
            )

    def test_wrong_length_means_rejected(self, three_regime_series):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import initialize_params

        with pytest.raises(InputError, match="init_means"):
            initialize_params(three_regime_series.to_numpy(), n_states=3, init_means=[1.0, 0.0])

    def test_non_positive_variances_rejected(self, three_regime_series):
        from regime_engine.regime.errors import InputError
        from regime_engine.regime.initializer import initialize_params

        with pytest.raises(InputError, match="strictly positive"):
            initialize_params(three_regime_series.to_numpy(), n_states=3, init_vars=[0.1, -0.2, 0.3])
