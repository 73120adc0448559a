"""Thin wrapper around statsmodels GLMs.

The wrapper exposes the small surface the estimators need: response scale
predictions on new data, coefficients, the predictor columns referenced by
the formula and refitting the same specification on other data.
"""

from __future__ import annotations

from typing import Any, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from numpy.typing import NDArray
from patsy import PatsyError
from statsmodels.genmod.families import Family
from statsmodels.tools.sm_exceptions import MissingDataError

from ..core.base import EstimationError, ValidationError
from .formula import formula_variables, response_name

FamilyLike = Union[str, Family, type]

_FAMILIES: dict[str, type[Family]] = {
    "gaussian": sm.families.Gaussian,
    "binomial": sm.families.Binomial,
    "poisson": sm.families.Poisson,
    "gamma": sm.families.Gamma,
    "inverse_gaussian": sm.families.InverseGaussian,
    "negative_binomial": sm.families.NegativeBinomial,
    "tweedie": sm.families.Tweedie,
}


def resolve_family(family: FamilyLike) -> Family:
    """Resolve a family name, class or instance to a statsmodels family.

    Args:
        family: 'gaussian', 'binomial', 'poisson', ... or a statsmodels family

    Returns:
        Instantiated statsmodels family with its default link
    """
    if isinstance(family, Family):
        return family
    if isinstance(family, type) and issubclass(family, Family):
        return family()
    if isinstance(family, str):
        key = family.lower().replace("-", "_").replace(" ", "_")
        if key not in _FAMILIES:
            raise ValidationError(
                f"Unknown family '{family}'. Choose one of {sorted(_FAMILIES)} "
                "or pass a statsmodels family"
            )
        return _FAMILIES[key]()
    raise ValidationError(
        f"family must be a string or a statsmodels family, got {type(family).__name__}"
    )


class GlmModel:
    """A fitted GLM bound to its formula and family.

    Attributes:
        formula: patsy formula used for fitting
        family: statsmodels family instance
        results: statsmodels ``GLMResults``
    """

    def __init__(self, formula: str, family: Family, results: Any) -> None:
        self.formula = formula
        self.family = family
        self.results = results

    @property
    def response(self) -> str:
        return response_name(self.formula)

    @property
    def predictors(self) -> list[str]:
        """Data columns referenced on the right hand side of the formula."""
        return formula_variables(self.formula)

    @property
    def coefficients(self) -> pd.Series:
        return self.results.params

    @property
    def nobs(self) -> int:
        return int(self.results.nobs)

    @property
    def endog(self) -> NDArray[np.float64]:
        """Response values the model was fitted on."""
        return np.asarray(self.results.model.endog, dtype=float)

    def predict(
        self, newdata: pd.DataFrame, response_scale: bool = True
    ) -> NDArray[np.float64]:
        """Predict means (or the linear predictor) for ``newdata``.

        Args:
            newdata: Data with every predictor column
            response_scale: Return means instead of the linear predictor

        Returns:
            Array of predictions in the row order of ``newdata``
        """
        which = "mean" if response_scale else "linear"
        try:
            predictions = self.results.predict(newdata, which=which)
        except PatsyError as e:
            raise EstimationError(f"Prediction failed for {self.formula!r}: {e}") from e
        return np.asarray(predictions, dtype=float)

    def refit(self, data: pd.DataFrame) -> GlmModel:
        """Fit the same formula and family on ``data``."""
        return fit_glm(self.formula, data, self.family)

    def summary(self) -> Any:
        return self.results.summary()

    def __repr__(self) -> str:
        return (
            f"GlmModel(formula={self.formula!r}, "
            f"family={type(self.family).__name__}, nobs={self.nobs})"
        )


def fit_glm(formula: str, data: pd.DataFrame, family: FamilyLike = "gaussian") -> GlmModel:
    """Fit a GLM with statsmodels.

    Args:
        formula: patsy formula, e.g. ``"Y ~ A + X1"``
        data: Data frame with all formula variables
        family: Family name, class or instance

    Returns:
        Fitted ``GlmModel``

    Raises:
        EstimationError: If statsmodels fails to fit the model, or a formula
            term evaluates to missing values
    """
    family = resolve_family(family)

    try:
        results = smf.glm(formula=formula, data=data, family=family, missing="raise").fit()
    except np.linalg.LinAlgError as e:
        raise EstimationError(
            f"Linear algebra error fitting {formula!r}: {str(e)}. "
            "This may be due to multicollinearity or rank deficiency in covariates."
        ) from e
    except (MissingDataError, PatsyError, ValueError) as e:
        if isinstance(e, MissingDataError) or "missing" in str(e):
            raise EstimationError(
                f"Terms of {formula!r} contain missing values (e.g. log of a non-positive "
                "value); rows with missing values are not dropped"
            ) from e
        raise EstimationError(f"Failed to fit GLM {formula!r}: {str(e)}") from e

    if int(results.nobs) != len(data):
        raise EstimationError(
            f"GLM {formula!r} used {int(results.nobs)} of {len(data)} rows; "
            "terms of the formula contain missing values"
        )

    return GlmModel(formula=formula, family=family, results=results)
