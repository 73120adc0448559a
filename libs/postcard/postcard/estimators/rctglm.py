"""Plug-in estimation of marginal effects in GLMs for two-armed trials.

``rctglm`` fits a GLM, predicts both counterfactual means for every
observation, plugs their averages into the estimand function and derives
the variance from the influence function. With ``cv_variance=True`` the
influence function uses out-of-sample predictions from k-fold refits; the
point estimate always uses the model fitted on all observations.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from shared.config import PostcardConfig

from ..core.base import (
    ExposureColumnNotInModel,
    NonBinaryExposure,
    RctGlmResult,
    ValidationError,
    log_at,
    resolve_verbosity,
)
from ..models.formula import check_formula_columns, expand_dot, formula_variables
from ..models.glm import FamilyLike, fit_glm
from .counterfactual import oos_counterfactual_means, predict_counterfactual_means
from .estimand import EstimandFunction, resolve_estimand, to_estimand_spec
from .influence import empirical_exposure_prob, estimate_influence

logger = logging.getLogger(__name__)


def validate_binary_exposure(values: pd.Series, name: str) -> NDArray[np.int64]:
    """Validate an exposure column is coded 0/1 and return it as integers.

    Raises:
        ValidationError: If the column has missing values
        NonBinaryExposure: If the column is not coded as 0 and 1
    """
    if values.isna().any():
        raise ValidationError(f"Exposure column '{name}' cannot contain missing data")

    distinct = list(pd.unique(values))
    try:
        numeric = {float(v) for v in distinct}
    except (TypeError, ValueError):
        numeric = None

    if numeric != {0.0, 1.0}:
        shown = ", ".join(repr(v.item() if isinstance(v, np.generic) else v) for v in distinct[:10])
        raise NonBinaryExposure(
            f"The exposure column '{name}' must be binary with values coded as "
            f"1 (exposed) and 0 (unexposed), but it has {len(distinct)} distinct "
            f"value(s): {shown}"
        )
    return np.asarray(values, dtype=float).astype(np.int64)


class RctGlmEngine:
    """Estimate an estimand of two counterfactual means in a GLM.

    Attributes:
        config: Configuration supplying defaults
        verbose: 0 silent, 1 milestones, 2 per-fold diagnostics
        random_state: Seed for the cross-validation folds
    """

    def __init__(
        self,
        config: PostcardConfig | None = None,
        verbose: int | None = None,
        random_state: int | None = None,
    ) -> None:
        if config is None:
            config = PostcardConfig()
        self.config = config
        self.verbose = resolve_verbosity(verbose, config)
        self.random_state = random_state if random_state is not None else config.random_state

    def _validate_inputs(
        self,
        formula: str,
        exposure_indicator: str,
        data: pd.DataFrame,
        exposure_prob: float | None,
        cv_variance: bool,
        cv_variance_folds: int,
    ) -> tuple[str, NDArray[np.int64]]:
        if not isinstance(data, pd.DataFrame):
            raise ValidationError(f"data must be a pandas DataFrame, got {type(data).__name__}")
        if not isinstance(exposure_indicator, str):
            raise ValidationError("exposure_indicator must be the name of a column")
        if exposure_indicator not in data.columns:
            raise ValidationError(f"Exposure column '{exposure_indicator}' is not in data")

        formula = expand_dot(formula, data)
        check_formula_columns(formula, data)

        if exposure_indicator not in formula_variables(formula):
            raise ExposureColumnNotInModel(
                f"'{exposure_indicator}' is not in the model {formula!r}. "
                "Specify the name of a binary predictor in the model"
            )

        exposure = validate_binary_exposure(data[exposure_indicator], exposure_indicator)

        if len(data) < self.config.min_sample_size:
            raise ValidationError(
                f"Minimum sample size of {self.config.min_sample_size} observations required"
            )

        used = formula_variables(formula, side="both")
        missing = [c for c in used if data[c].isna().any()]
        if missing:
            raise ValidationError(
                f"Columns used in the model contain missing data: {', '.join(missing)}"
            )

        if exposure_prob is not None and not 0 < exposure_prob < 1:
            raise ValidationError(
                f"exposure_prob must be strictly between 0 and 1, got {exposure_prob}"
            )

        if cv_variance:
            if not isinstance(cv_variance_folds, (int, np.integer)) or cv_variance_folds < 2:
                raise ValidationError(
                    f"cv_variance_folds must be an integer >= 2, got {cv_variance_folds!r}"
                )
            smallest_group = int(min(exposure.sum(), len(exposure) - exposure.sum()))
            if cv_variance_folds > smallest_group:
                raise ValidationError(
                    f"cv_variance_folds ({cv_variance_folds}) exceeds the size of the "
                    f"smallest exposure group ({smallest_group})"
                )

        return formula, exposure

    def fit(
        self,
        formula: str,
        exposure_indicator: str,
        data: pd.DataFrame,
        family: FamilyLike = "gaussian",
        estimand_fun: str | EstimandFunction = "ate",
        estimand_fun_deriv0: EstimandFunction | None = None,
        estimand_fun_deriv1: EstimandFunction | None = None,
        exposure_prob: float | None = None,
        cv_variance: bool = False,
        cv_variance_folds: int | None = None,
    ) -> RctGlmResult:
        """Fit the GLM and estimate the estimand with its variance.

        Args:
            formula: patsy formula, ``.`` expands to all other columns
            exposure_indicator: Name of the binary (0/1) exposure column
            data: Trial data; not modified
            family: GLM family name, class or instance
            estimand_fun: "ate", "rate_ratio" or a callable r(psi1, psi0)
            estimand_fun_deriv0: Optional d r / d psi0
            estimand_fun_deriv1: Optional d r / d psi1
            exposure_prob: Assumed randomisation probability; the empirical
                proportion of exposed observations when None
            cv_variance: Use out-of-sample predictions for the variance
            cv_variance_folds: Folds for ``cv_variance``

        Returns:
            RctGlmResult

        Raises:
            ValidationError: If inputs are invalid (before any fitting)
            NonBinaryExposure: If the exposure is not coded 0/1
            UnsupportedExpression: If derivatives are missing and cannot be
                derived symbolically
            EstimationError: If the GLM cannot be fitted
        """
        if cv_variance_folds is None:
            cv_variance_folds = self.config.cv_variance_folds

        spec = to_estimand_spec(estimand_fun, estimand_fun_deriv0, estimand_fun_deriv1)
        formula, exposure = self._validate_inputs(
            formula, exposure_indicator, data, exposure_prob, cv_variance, cv_variance_folds
        )

        resolved = resolve_estimand(spec, verbose=self.verbose)

        data = data.copy()
        data[exposure_indicator] = exposure

        log_at(logger, self.verbose, 1, "Fitting GLM %r", formula)
        glm = fit_glm(formula, data, family)

        counterfactuals = predict_counterfactual_means(glm, exposure_indicator, data)

        if exposure_prob is None:
            pi = empirical_exposure_prob(exposure)
            pi_source = "empirical"
        else:
            pi = float(exposure_prob)
            pi_source = "assumed"

        outcome = glm.endog
        tolerance = self.config.rate_ratio_tolerance

        point = estimate_influence(
            psi0=counterfactuals.psi0,
            psi1=counterfactuals.psi1,
            exposure=exposure,
            outcome=outcome,
            exposure_prob=pi,
            estimand_fun=resolved.fun,
            deriv0=resolved.deriv0,
            deriv1=resolved.deriv1,
            tolerance=tolerance,
        )

        if cv_variance:
            variance_predictions = oos_counterfactual_means(
                glm,
                exposure_indicator,
                data,
                cv_folds=cv_variance_folds,
                random_state=self.random_state,
                verbose=self.verbose,
            )
            variance_fit = estimate_influence(
                psi0=variance_predictions.psi0,
                psi1=variance_predictions.psi1,
                exposure=exposure,
                outcome=outcome,
                exposure_prob=pi,
                estimand_fun=resolved.fun,
                deriv0=resolved.deriv0,
                deriv1=resolved.deriv1,
                psi0_hat=point.psi0,
                psi1_hat=point.psi1,
                tolerance=tolerance,
            )
        else:
            variance_predictions = counterfactuals
            variance_fit = point

        log_at(
            logger,
            self.verbose,
            1,
            "Estimand (%s) estimate: %.4f (SE %.4f)",
            resolved.body,
            point.estimate,
            variance_fit.standard_error,
        )

        call: dict[str, Any] = {
            "formula": formula,
            "exposure_indicator": exposure_indicator,
            "family": type(glm.family).__name__,
            "estimand_fun": estimand_fun if isinstance(estimand_fun, str) else resolved.name,
            "exposure_prob": exposure_prob,
            "cv_variance": cv_variance,
            "cv_variance_folds": cv_variance_folds if cv_variance else None,
            "random_state": self.random_state,
        }

        return RctGlmResult(
            fitted_glm=glm,
            estimand_spec=resolved,
            exposure_indicator=exposure_indicator,
            counterfactual_predictions=counterfactuals,
            variance_predictions=variance_predictions,
            psi0=point.psi0,
            psi1=point.psi1,
            estimate=point.estimate,
            standard_error=variance_fit.standard_error,
            variance=variance_fit.variance,
            exposure_prob=pi,
            exposure_prob_source=pi_source,
            influence_function=variance_fit.influence_function,
            n_observations=len(data),
            cv_variance=cv_variance,
            cv_variance_folds=cv_variance_folds if cv_variance else None,
            call=call,
            verbose=self.verbose,
            numerical_warnings=tuple(dict.fromkeys(point.warnings + variance_fit.warnings)),
        )


def rctglm(
    formula: str,
    exposure_indicator: str,
    data: pd.DataFrame,
    family: FamilyLike = "gaussian",
    estimand_fun: str | Callable[[Any, Any], Any] = "ate",
    estimand_fun_deriv0: Callable[[Any, Any], Any] | None = None,
    estimand_fun_deriv1: Callable[[Any, Any], Any] | None = None,
    exposure_prob: float | None = None,
    cv_variance: bool = False,
    cv_variance_folds: int | None = None,
    random_state: int | None = None,
    verbose: int | None = None,
    config: PostcardConfig | None = None,
) -> RctGlmResult:
    """Estimate any estimand of the counterfactual means with a GLM.

    See ``RctGlmEngine.fit`` for the arguments.

    Example:
        >>> dat = glm_data("1 + 1.5*X1 + 2*A", X1=x1, A=a)  # doctest: +SKIP
        >>> ate = rctglm("Y ~ .", "A", dat, family="gaussian")  # doctest: +SKIP
        >>> ate.estimand()  # doctest: +SKIP
    """
    engine = RctGlmEngine(config=config, verbose=verbose, random_state=random_state)
    return engine.fit(
        formula=formula,
        exposure_indicator=exposure_indicator,
        data=data,
        family=family,
        estimand_fun=estimand_fun,
        estimand_fun_deriv0=estimand_fun_deriv0,
        estimand_fun_deriv1=estimand_fun_deriv1,
        exposure_prob=exposure_prob,
        cv_variance=cv_variance,
        cv_variance_folds=cv_variance_folds,
    )
