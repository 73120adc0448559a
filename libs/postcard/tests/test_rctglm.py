"""Tests for plug-in estimation of marginal effects with rctglm."""

import numpy as np
import pandas as pd
import pytest

from postcard import est, estimand, glm_data, prog, rctglm
from postcard.core.base import (
    EstimationError,
    ExposureColumnNotInModel,
    IncompatibleData,
    NonBinaryExposure,
    ResponseNotFound,
    UnsupportedExpression,
    ValidationError,
)
from postcard.estimators.rctglm import RctGlmEngine, validate_binary_exposure


def custom_ate(psi1, psi0):
    return psi1 - psi0


def clipped_difference(psi1, psi0):
    return max(psi1 - psi0, 0.0)


def swapped_ratio(psi0, psi1):
    return psi1 / psi0


class TestRctGlmEstimation:
    """Point estimates and standard errors."""

    def test_recovers_ate(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial)

        assert result.estimate == pytest.approx(2.0, abs=0.5)
        assert 0 < result.standard_error < 0.5
        assert result.variance == pytest.approx(result.standard_error**2)
        assert result.estimand_name == "ate"
        assert result.estimand_body == "psi1 - psi0"

    def test_recovers_ate_in_small_trial(self):
        rng = np.random.default_rng(123)
        x1 = rng.normal(size=100)
        a = rng.binomial(1, 0.5, size=100)
        data = glm_data("1 + 1.5*X1 + 2*A", X1=x1, A=a, random_state=124)

        result = rctglm("Y ~ .", "A", data, estimand_fun="ate")

        assert result.estimate == pytest.approx(2.0, abs=0.5)

    def test_dot_formula_matches_explicit(self, gaussian_trial):
        dot = rctglm("Y ~ .", "A", gaussian_trial)
        explicit = rctglm("Y ~ X1 + A", "A", gaussian_trial)

        assert dot.estimate == pytest.approx(explicit.estimate)
        assert dot.fitted_glm.formula == "Y ~ X1 + A"

    def test_linear_model_ate_equals_coefficient(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial)

        assert result.estimate == pytest.approx(result.coef()["A"])

    def test_rate_ratio_poisson(self, poisson_trial):
        result = rctglm(
            "Y ~ A + X1", "A", poisson_trial, family="poisson", estimand_fun="rate_ratio"
        )

        assert result.estimate == pytest.approx(np.exp(0.4), abs=0.3)
        assert result.estimate == pytest.approx(result.psi1 / result.psi0)
        assert result.estimand_name == "rate_ratio"

    def test_string_and_callable_estimands_agree(self, gaussian_trial):
        by_name = rctglm("Y ~ A + X1", "A", gaussian_trial, estimand_fun="ate")
        by_callable = rctglm("Y ~ A + X1", "A", gaussian_trial, estimand_fun=custom_ate)

        assert by_name.estimate == pytest.approx(by_callable.estimate)
        assert by_name.standard_error == pytest.approx(by_callable.standard_error)
        assert by_callable.estimand_name == "custom_ate"

    def test_manual_derivatives_match_symbolic(self, poisson_trial):
        automatic = rctglm(
            "Y ~ A + X1", "A", poisson_trial, family="poisson", estimand_fun="rate_ratio"
        )
        manual = rctglm(
            "Y ~ A + X1",
            "A",
            poisson_trial,
            family="poisson",
            estimand_fun=lambda psi1, psi0: psi1 / psi0,
            estimand_fun_deriv0=lambda psi1, psi0: -psi1 / psi0**2,
            estimand_fun_deriv1=lambda psi1, psi0: 1 / psi0,
        )

        assert manual.estimand_spec.derivative_source == "user"
        assert automatic.estimand_spec.derivative_source == "symbolic"
        assert manual.estimate == pytest.approx(automatic.estimate)
        assert manual.standard_error == pytest.approx(automatic.standard_error)

    def test_estimand_arguments_in_either_order(self, poisson_trial):
        reference = rctglm(
            "Y ~ A + X1", "A", poisson_trial, family="poisson", estimand_fun="rate_ratio"
        )
        swapped = rctglm(
            "Y ~ A + X1", "A", poisson_trial, family="poisson", estimand_fun=swapped_ratio
        )

        assert swapped.estimate == pytest.approx(reference.estimate)
        assert swapped.standard_error == pytest.approx(reference.standard_error)
        assert swapped.estimand_name == "swapped_ratio"

    def test_swapped_manual_derivatives(self, poisson_trial):
        reference = rctglm(
            "Y ~ A + X1", "A", poisson_trial, family="poisson", estimand_fun="rate_ratio"
        )
        manual = rctglm(
            "Y ~ A + X1",
            "A",
            poisson_trial,
            family="poisson",
            estimand_fun=swapped_ratio,
            estimand_fun_deriv0=lambda psi0, psi1: -psi1 / psi0**2,
            estimand_fun_deriv1=lambda psi0, psi1: 1 / psi0,
        )

        assert manual.estimate == pytest.approx(reference.estimate)
        assert manual.standard_error == pytest.approx(reference.standard_error)

    def test_assumed_exposure_prob(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial, exposure_prob=0.5)
        empirical = rctglm("Y ~ A + X1", "A", gaussian_trial)

        assert result.exposure_prob == 0.5
        assert result.exposure_prob_source == "assumed"
        assert empirical.exposure_prob_source == "empirical"
        assert empirical.exposure_prob == pytest.approx(gaussian_trial["A"].mean())

    def test_boolean_exposure_is_accepted(self, gaussian_trial):
        data = gaussian_trial.assign(A=gaussian_trial["A"].astype(bool))

        result = rctglm("Y ~ A + X1", "A", data)

        assert result.estimate == pytest.approx(2.0, abs=0.5)


class TestCrossValidatedVariance:
    """Out-of-sample variance estimation."""

    def test_point_estimate_unchanged(self, gaussian_trial, random_state):
        plain = rctglm("Y ~ A + X1", "A", gaussian_trial)
        cv = rctglm(
            "Y ~ A + X1",
            "A",
            gaussian_trial,
            cv_variance=True,
            cv_variance_folds=5,
            random_state=random_state,
        )

        assert cv.estimate == pytest.approx(plain.estimate)
        assert cv.psi0 == pytest.approx(plain.psi0)
        assert cv.standard_error != plain.standard_error
        assert cv.standard_error == pytest.approx(plain.standard_error, rel=0.2)
        assert cv.variance_predictions.source == "cross_validated"
        assert cv.cv_variance_folds == 5

    def test_reproducible_with_seed(self, gaussian_trial):
        first = rctglm("Y ~ A + X1", "A", gaussian_trial, cv_variance=True, random_state=3)
        second = rctglm("Y ~ A + X1", "A", gaussian_trial, cv_variance=True, random_state=3)

        assert first.standard_error == second.standard_error

    def test_too_many_folds(self, gaussian_trial):
        small = gaussian_trial.iloc[:20].assign(A=[0, 1] * 10)

        with pytest.raises(ValidationError, match="smallest exposure group"):
            rctglm("Y ~ A + X1", "A", small, cv_variance=True, cv_variance_folds=15)


class TestRctGlmValidation:
    """Invalid input is rejected before fitting."""

    def test_non_binary_exposure(self, gaussian_trial):
        data = gaussian_trial.copy()
        data.loc[data.index[:5], "A"] = 2

        with pytest.raises(NonBinaryExposure, match=".*1.*0"):
            rctglm("Y ~ A + X1", "A", data)

    def test_single_level_exposure(self, gaussian_trial):
        data = gaussian_trial.assign(A=1)

        with pytest.raises(NonBinaryExposure):
            rctglm("Y ~ A + X1", "A", data)

    def test_exposure_not_in_formula(self, gaussian_trial):
        with pytest.raises(ExposureColumnNotInModel):
            rctglm("Y ~ X1", "A", gaussian_trial)

    def test_missing_exposure_column(self, gaussian_trial):
        with pytest.raises(ValidationError, match="not in data"):
            rctglm("Y ~ B + X1", "B", gaussian_trial)

    def test_missing_response(self, gaussian_trial):
        with pytest.raises(ResponseNotFound):
            rctglm("Z ~ A + X1", "A", gaussian_trial)

    def test_missing_covariate(self, gaussian_trial):
        with pytest.raises(IncompatibleData):
            rctglm("Y ~ A + X2", "A", gaussian_trial)

    def test_invalid_estimand_name(self, gaussian_trial):
        with pytest.raises(ValidationError, match='"ate", "rate_ratio"'):
            rctglm("Y ~ A + X1", "A", gaussian_trial, estimand_fun="odds_ratio")

    def test_unsupported_estimand_without_derivatives(self, gaussian_trial):
        with pytest.raises(UnsupportedExpression, match="manually"):
            rctglm("Y ~ A + X1", "A", gaussian_trial, estimand_fun=clipped_difference)

    def test_unsupported_estimand_with_derivatives(self, gaussian_trial):
        result = rctglm(
            "Y ~ A + X1",
            "A",
            gaussian_trial,
            estimand_fun=clipped_difference,
            estimand_fun_deriv0=lambda psi1, psi0: -1.0,
            estimand_fun_deriv1=lambda psi1, psi0: 1.0,
        )

        assert result.estimate == pytest.approx(2.0, abs=0.5)

    def test_too_few_observations(self, gaussian_trial):
        data = gaussian_trial.iloc[:8].assign(A=[0, 1] * 4)

        with pytest.raises(ValidationError, match="Minimum sample size"):
            rctglm("Y ~ A + X1", "A", data)

    def test_missing_values(self, gaussian_trial):
        data = gaussian_trial.copy()
        data.loc[data.index[0], "X1"] = np.nan

        with pytest.raises(ValidationError, match="missing data"):
            rctglm("Y ~ A + X1", "A", data)

    def test_formula_transform_with_missing_values(self, gaussian_trial):
        with pytest.raises(EstimationError, match="missing values"):
            rctglm("Y ~ A + np.log(X1)", "A", gaussian_trial)

    @pytest.mark.parametrize("prob", [0.0, 1.0, 1.2])
    def test_invalid_exposure_prob(self, gaussian_trial, prob):
        with pytest.raises(ValidationError, match="exposure_prob"):
            rctglm("Y ~ A + X1", "A", gaussian_trial, exposure_prob=prob)

    def test_does_not_modify_input(self, gaussian_trial):
        original = gaussian_trial.copy()

        rctglm("Y ~ A + X1", "A", gaussian_trial, cv_variance=True, cv_variance_folds=3)

        pd.testing.assert_frame_equal(gaussian_trial, original)


class TestRctGlmResult:
    """Accessors and printable output of the result."""

    def test_estimand_table(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial)

        table = estimand(result)

        assert list(table.columns) == ["Estimate", "Std. Error"]
        assert table["Estimate"].iloc[0] == result.estimate
        pd.testing.assert_frame_equal(est(result), table)

    def test_prog_is_none_without_prognostic_score(self, gaussian_trial):
        assert prog(rctglm("Y ~ A + X1", "A", gaussian_trial)) is None

    def test_confidence_interval_contains_estimate(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial)

        lower, upper = result.confidence_interval()

        assert lower < result.estimate < upper
        assert upper - lower == pytest.approx(2 * 1.959964 * result.standard_error, rel=1e-4)

    def test_str_and_summary(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial)

        text = str(result)
        summary = result.summary()

        assert "Object of class 'RctGlmResult'" in text
        assert "Estimand function r: psi1 - psi0" in text
        assert "in-sample influence function" in summary
        assert "GLM fit:" in summary

    def test_result_is_frozen(self, gaussian_trial):
        result = rctglm("Y ~ A + X1", "A", gaussian_trial)

        with pytest.raises(AttributeError):
            result.estimate = 0.0

    def test_call_is_recorded(self, gaussian_trial):
        result = rctglm("Y ~ .", "A", gaussian_trial, estimand_fun="ate")

        assert result.call["formula"] == "Y ~ X1 + A"
        assert result.call["estimand_fun"] == "ate"
        assert result.call["family"] == "Gaussian"


class TestEngine:
    """The engine class behind rctglm."""

    def test_verbose_logging(self, gaussian_trial, caplog):
        engine = RctGlmEngine(verbose=1)

        with caplog.at_level("INFO", logger="postcard"):
            engine.fit("Y ~ A + X1", "A", gaussian_trial)

        assert "Fitting GLM" in caplog.text
        assert "Symbolically deriving" in caplog.text

    def test_config_defaults_are_used(self, gaussian_trial, config):
        config.cv_variance_folds = 4

        result = RctGlmEngine(config=config).fit(
            "Y ~ A + X1", "A", gaussian_trial, cv_variance=True
        )

        assert result.cv_variance_folds == 4

    def test_invalid_verbose(self):
        with pytest.raises(ValidationError, match="verbose"):
            RctGlmEngine(verbose=5)


def test_validate_binary_exposure_returns_integers():
    values = validate_binary_exposure(pd.Series([True, False, True]), "A")

    assert values.tolist() == [1, 0, 1]
