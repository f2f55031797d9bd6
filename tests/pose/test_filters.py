"""Tests for the landmark filters and their config parsing."""

import numpy as np
import pytest

from retarget.core import ConfigurationError
from retarget.pose.filters import (
    FILTER_PRESETS,
    EuclideanHighPassFilter,
    FilterKind,
    GaussianVectorFilter,
    KalmanParams,
    KalmanVectorFilter,
    OneEuroParams,
    OneEuroVectorFilter,
    ScalarKalmanFilter,
    create_vector_filter,
    filter_params_from_dict,
    gaussian_kernel_1d,
    load_filter_presets,
)


class TestFilterParams:
    def test_parse_kind_case_insensitive(self):
        assert FilterKind.parse("kalman") is FilterKind.KALMAN
        assert FilterKind.parse("OneEuro") is FilterKind.ONE_EURO

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            FilterKind.parse("median")

    def test_kalman_from_config_keys(self):
        params = filter_params_from_dict({"type": "Kalman", "R": 0.5, "Q": 4, "gaussian_sigma": 2})
        assert params == KalmanParams(r=0.5, q=4.0, gaussian_sigma=2.0)

    def test_one_euro_from_config_keys(self):
        params = filter_params_from_dict({"type": "OneEuro", "one_euro_cutoff": 0.5, "one_euro_beta": 1})
        assert isinstance(params, OneEuroParams)
        assert params.min_cutoff == 0.5
        assert params.beta == 1.0
        assert params.gaussian_sigma is None

    def test_presets_follow_config(self, config):
        config.set("filters.hand.Q", 20.0)
        presets = load_filter_presets(config)
        assert presets["hand"].q == 20.0
        assert presets["face"].gaussian_sigma == 2.0
        assert presets["rotation"] == FILTER_PRESETS["rotation"]

    def test_non_mapping_preset_rejected(self, config):
        config.set("filters.pose", "Kalman")
        with pytest.raises(ConfigurationError):
            load_filter_presets(config)

    def test_create_rejects_unknown_params(self):
        with pytest.raises(ConfigurationError):
            create_vector_filter({"type": "Kalman"})


class TestKalman:
    def test_first_sample_initializes(self):
        f = ScalarKalmanFilter(r=1.0, q=10.0)
        assert f.filter(3.0) == 3.0
        assert f.last_measurement == 3.0

    def test_converges_towards_measurement(self):
        f = ScalarKalmanFilter(r=1.0, q=1.0)
        f.filter(0.0)
        values = [f.filter(1.0) for _ in range(20)]
        assert all(0.0 < v <= 1.0 for v in values)
        assert values == sorted(values)
        assert values[-1] == pytest.approx(1.0, abs=1e-3)

    def test_vector_filters_axes_independently(self):
        f = KalmanVectorFilter(r=1.0, q=1.0)
        np.testing.assert_allclose(f.next(1, np.array([1.0, 2.0, 3.0])), [1.0, 2.0, 3.0])
        out = f.next(2, np.array([1.0, 4.0, 3.0]))
        assert out[0] == 1.0 and out[2] == 3.0
        assert 2.0 < out[1] < 4.0


class TestOneEuro:
    def test_constant_signal_stays_put(self):
        x = np.array([0.2, -0.4, 1.0])
        f = OneEuroVectorFilter(0, x, min_cutoff=1.0)
        for t in range(1, 10):
            np.testing.assert_allclose(f.next(t, x), x)

    def test_step_is_smoothed(self):
        f = OneEuroVectorFilter(0, np.zeros(3), min_cutoff=0.1)
        out = f.next(1, np.ones(3))
        assert np.all(out > 0.0) and np.all(out < 1.0)

    def test_reset_restores_initial_state(self):
        f = OneEuroVectorFilter(0, np.zeros(3), min_cutoff=0.1)
        first = f.next(1, np.ones(3))
        f.next(2, np.ones(3))
        f.reset()
        np.testing.assert_allclose(f.next(1, np.ones(3)), first)


class TestGaussian:
    def test_kernel_is_normalized_and_symmetric(self):
        kernel = gaussian_kernel_1d(5, 2.0)
        assert len(kernel) == 5
        assert kernel.sum() == pytest.approx(1.0)
        np.testing.assert_allclose(kernel, kernel[::-1])

    def test_zero_until_window_full(self):
        f = GaussianVectorFilter(5, 2.0)
        for _ in range(4):
            f.push(np.ones(3))
            np.testing.assert_array_equal(f.apply(), np.zeros(3))
        f.push(np.ones(3))
        np.testing.assert_allclose(f.apply(), np.ones(3))

    def test_keeps_oldest_sample_magnitude(self):
        f = GaussianVectorFilter(5, 2.0)
        for v in ([1, 0, 0], [0, 1, 0], [0, 0, 1], [1, 1, 0], [0, 1, 1]):
            f.push(np.array(v, dtype=float))
        assert np.linalg.norm(f.apply()) == pytest.approx(1.0)

    def test_window_too_short(self):
        with pytest.raises(ConfigurationError):
            GaussianVectorFilter(1, 2.0)


class TestHighPass:
    def test_small_moves_ignored(self):
        f = EuclideanHighPassFilter(0.1)
        f.update(np.array([0.05, 0.0, 0.0]))
        np.testing.assert_array_equal(f.value, np.zeros(3))
        f.update(np.array([0.5, 0.0, 0.0]))
        np.testing.assert_array_equal(f.value, [0.5, 0.0, 0.0])
