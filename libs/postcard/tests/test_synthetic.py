"""Tests for simulation of data with a known GLM mean."""

import numpy as np
import pytest

from postcard.core.base import ValidationError
from postcard.data.synthetic import glm_data


class TestGlmData:
    """Test cases for glm_data."""

    def setup_method(self):
        """Set up covariates with a fixed random state."""
        rng = np.random.default_rng(0)
        self.x1 = rng.normal(size=2000)
        self.a = rng.binomial(1, 0.5, size=2000)

    def test_columns_and_length(self):
        data = glm_data("1 + 2*A", X1=self.x1, A=self.a, random_state=1)

        assert list(data.columns) == ["Y", "X1", "A"]
        assert len(data) == 2000

    def test_gaussian_mean(self):
        data = glm_data("1 + 1.5*X1 + 2*A", X1=self.x1, A=self.a, random_state=1, noise_sd=0.0)

        np.testing.assert_allclose(data["Y"], 1 + 1.5 * self.x1 + 2 * self.a)

    def test_binomial_outcome(self):
        data = glm_data("-0.5 + X1", family="binomial", X1=self.x1, random_state=1)

        assert set(data["Y"].unique()) <= {0, 1}
        expected = np.mean(1 / (1 + np.exp(0.5 - self.x1)))
        assert data["Y"].mean() == pytest.approx(expected, abs=0.05)

    def test_poisson_outcome(self):
        data = glm_data("0.5 + 0.2*A", family="poisson", A=self.a, random_state=1)

        assert (data["Y"] >= 0).all()
        assert data["Y"].mean() == pytest.approx(np.mean(np.exp(0.5 + 0.2 * self.a)), abs=0.15)

    def test_reproducible(self):
        first = glm_data("X1", X1=self.x1, random_state=3)
        second = glm_data("X1", X1=self.x1, random_state=3)

        assert first.equals(second)

    def test_custom_response_name(self):
        data = glm_data("X1", response_name="outcome", X1=self.x1)

        assert data.columns[0] == "outcome"

    def test_constant_mean_is_broadcast(self):
        data = glm_data("2", X1=self.x1, noise_sd=0.0)

        assert (data["Y"] == 2).all()

    def test_unsupported_family(self):
        with pytest.raises(ValidationError, match="Cannot simulate"):
            glm_data("X1", family="gamma", X1=self.x1)

    def test_unknown_column_in_expression(self):
        with pytest.raises(ValidationError, match="mean_expr"):
            glm_data("X9 + 1", X1=self.x1)

    def test_needs_columns(self):
        with pytest.raises(ValidationError):
            glm_data("1")
