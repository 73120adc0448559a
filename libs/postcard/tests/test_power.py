"""Tests for the power approximations."""

import numpy as np
import pytest
from scipy import stats

from postcard import power_gs, power_nc, variance_ancova
from postcard.core.base import EstimationError, ValidationError


class TestPowerNc:
    """Power from the noncentral t distribution."""

    def test_no_effect_gives_significance_level(self):
        assert power_nc(100, variance=1.0, ate=0.0, alpha=0.05) == pytest.approx(0.05)

    def test_increases_with_sample_size(self):
        powers = power_nc(np.array([20, 50, 100, 200]), variance=1.0, ate=0.5)

        assert powers.shape == (4,)
        assert np.all(np.diff(powers) > 0)

    def test_increases_with_effect_and_decreases_with_variance(self):
        small = power_nc(100, variance=1.0, ate=0.3)
        large = power_nc(100, variance=1.0, ate=0.6)
        noisy = power_nc(100, variance=2.0, ate=0.6)

        assert small < large
        assert noisy < large

    def test_classic_two_sample_case(self):
        # 64 per arm detect a standardized effect of 0.5 with 80% power
        assert power_nc(128, variance=1.0, ate=0.5, n_covariates=0) == pytest.approx(
            0.80, abs=0.01
        )

    def test_covariates_cost_degrees_of_freedom(self):
        assert power_nc(30, variance=1.0, ate=1.0, n_covariates=10) < power_nc(
            30, variance=1.0, ate=1.0, n_covariates=0
        )

    def test_too_small_sample(self):
        with pytest.raises(ValidationError, match="degrees of freedom"):
            power_nc(4, variance=1.0, ate=1.0, n_covariates=2)


class TestPowerGs:
    """Guenther-Schouten approximation."""

    def test_close_to_noncentral_t(self):
        n = np.array([50, 100, 400])

        np.testing.assert_allclose(
            power_gs(n, variance=1.0, ate=0.4),
            power_nc(n, variance=1.0, ate=0.4, n_covariates=0),
            atol=0.01,
        )

    def test_margin_shifts_effect(self):
        assert power_gs(200, variance=1.0, ate=0.5, margin=0.2) == pytest.approx(
            power_gs(200, variance=1.0, ate=0.3)
        )

    def test_unequal_allocation_loses_power(self):
        assert power_gs(120, variance=1.0, ate=0.5, r=2) < power_gs(120, variance=1.0, ate=0.5)

    def test_matches_closed_form(self):
        z = stats.norm.ppf(0.975)
        expected = stats.norm.cdf(np.sqrt((100 - z**2 / 2) / 4) * 0.5 - z)

        assert power_gs(100, variance=1.0, ate=0.5) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"variance": 0.0}, "variance"),
            ({"r": -1.0}, "allocation ratio"),
            ({"alpha": 1.0}, "alpha"),
            ({"n": 1}, "n must exceed"),
        ],
    )
    def test_invalid_arguments(self, kwargs, match):
        arguments = {"n": 100, "variance": 1.0, "ate": 0.5, **kwargs}

        with pytest.raises(ValidationError, match=match):
            power_gs(**arguments)


class TestVarianceAncova:
    """Residual variance estimated on historical data."""

    def test_matches_residual_variance(self, simple_history):
        variance = variance_ancova("Y ~ X1 + X2", simple_history)

        assert variance < simple_history["Y"].var()
        assert variance == pytest.approx(0.25, rel=0.4)

    def test_inflation_and_deflation_are_conservative(self, simple_history):
        plain = variance_ancova("Y ~ X1 + X2", simple_history)
        conservative = variance_ancova(
            "Y ~ X1 + X2", simple_history, inflation=1.2, deflation=0.9
        )

        assert conservative > plain

    def test_planned_power_from_history(self, simple_history):
        variance = variance_ancova("Y ~ X1 + X2", simple_history)

        assert power_nc(100, variance, ate=0.3, n_covariates=2) > power_nc(
            100, simple_history["Y"].var(), ate=0.3, n_covariates=2
        )

    def test_missing_column(self, simple_history):
        with pytest.raises(EstimationError):
            variance_ancova("Y ~ X1 + X9", simple_history)
