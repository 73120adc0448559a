"""Power approximations for covariate adjusted trials.

Both approximations describe a two-sided test of ``ate = margin`` at level
``alpha`` with ``n`` participants allocated ``r:1`` to exposure and control,
where ``variance`` is the residual variance after covariate adjustment. For
ANCOVA that is ``Var(Y) * (1 - R^2)``, which ``variance_ancova`` estimates
from historical data.

- ``power_gs``: the Guenther-Schouten approximation, a normal approximation
  with a correction for using the t distribution.
- ``power_nc``: the t-test power from the noncentral t distribution with
  ``n - 2 - n_covariates`` degrees of freedom.
"""

from __future__ import annotations

import logging
from typing import Any, Union

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from numpy.typing import NDArray
from patsy import PatsyError
from scipy import stats
from statsmodels.tools.sm_exceptions import MissingDataError

from .core.base import EstimationError, ValidationError

logger = logging.getLogger(__name__)

SampleSize = Union[int, float, NDArray[Any]]


def _validate(variance: float, r: float, alpha: float) -> None:
    if not variance > 0:
        raise ValidationError(f"variance must be positive, got {variance}")
    if not r > 0:
        raise ValidationError(f"allocation ratio r must be positive, got {r}")
    if not 0 < alpha < 1:
        raise ValidationError(f"alpha must be strictly between 0 and 1, got {alpha}")


def _scalar_or_array(values: NDArray[np.float64]) -> float | NDArray[np.float64]:
    values = np.asarray(values, dtype=float)
    return float(values) if values.ndim == 0 else values


def variance_ancova(
    formula: str,
    data: pd.DataFrame,
    inflation: float = 1.0,
    deflation: float = 1.0,
) -> float:
    """Estimate the ANCOVA variance ``Var(Y) * (1 - R^2)`` from data.

    Args:
        formula: Model of the outcome on baseline covariates, e.g.
            ``"Y ~ X1 + X2"``; typically fitted on historical controls
        data: Data to estimate the variance on
        inflation: Multiplier applied to ``Var(Y)``, to plan conservatively
        deflation: Multiplier applied to ``R^2``

    Raises:
        ValidationError: If the multipliers are not positive
        EstimationError: If the linear model cannot be fitted
    """
    if inflation <= 0 or deflation <= 0:
        raise ValidationError("inflation and deflation must be positive")

    try:
        results = smf.ols(formula=formula, data=data, missing="raise").fit()
    except (MissingDataError, PatsyError, ValueError, np.linalg.LinAlgError) as e:
        raise EstimationError(f"Failed to fit {formula!r}: {str(e)}") from e

    response_variance = float(np.var(results.model.endog, ddof=1))
    r_squared = min(float(results.rsquared) * deflation, 1.0)
    variance = inflation * response_variance * (1 - r_squared)
    logger.debug(
        "ANCOVA variance from %r: Var(Y)=%.4g, R^2=%.4g, variance=%.4g",
        formula,
        response_variance,
        r_squared,
        variance,
    )
    return variance


def power_gs(
    n: SampleSize,
    variance: float,
    ate: float,
    r: float = 1.0,
    margin: float = 0.0,
    alpha: float = 0.05,
) -> float | NDArray[np.float64]:
    """Guenther-Schouten power approximation.

    ``power = Phi(sqrt(r / (1 + r)^2 * (n - z^2 / 2)) * |ate - margin| / sd - z)``
    with ``z`` the ``1 - alpha / 2`` normal quantile.

    Args:
        n: Total sample size; scalar or array
        variance: Residual variance of the outcome after adjustment
        ate: Expected average treatment effect
        r: Allocation ratio of exposed to control participants
        margin: Value of the effect under the null hypothesis
        alpha: Two-sided significance level

    Returns:
        Approximate power, with the shape of ``n``

    Raises:
        ValidationError: If ``n`` is too small for the approximation
    """
    _validate(variance, r, alpha)
    n = np.asarray(n, dtype=float)
    z = stats.norm.ppf(1 - alpha / 2)
    effective_n = n - z**2 / 2
    if np.any(effective_n <= 0):
        raise ValidationError(f"n must exceed {z**2 / 2:.3g} for alpha={alpha}")

    quantile = np.sqrt(r / (1 + r) ** 2 * effective_n) * abs(ate - margin) / np.sqrt(variance) - z
    return _scalar_or_array(stats.norm.cdf(quantile))


def power_nc(
    n: SampleSize,
    variance: float,
    ate: float,
    r: float = 1.0,
    margin: float = 0.0,
    alpha: float = 0.05,
    n_covariates: int = 1,
) -> float | NDArray[np.float64]:
    """Power of the two-sided t-test from the noncentral t distribution.

    Args:
        n: Total sample size; scalar or array
        variance: Residual variance of the outcome after adjustment
        ate: Expected average treatment effect
        r: Allocation ratio of exposed to control participants
        margin: Value of the effect under the null hypothesis
        alpha: Two-sided significance level
        n_covariates: Number of adjustment covariates besides the exposure

    Returns:
        Power, with the shape of ``n``

    Raises:
        ValidationError: If fewer than one residual degree of freedom remains
    """
    _validate(variance, r, alpha)
    if n_covariates < 0:
        raise ValidationError(f"n_covariates must be non-negative, got {n_covariates}")
    n = np.asarray(n, dtype=float)
    df = n - 2 - n_covariates
    if np.any(df < 1):
        raise ValidationError(
            f"n must exceed {n_covariates + 2} to leave residual degrees of freedom"
        )

    ncp = np.sqrt(r * n / (1 + r) ** 2) * (ate - margin) / np.sqrt(variance)
    critical = stats.t.ppf(1 - alpha / 2, df)
    power = 1 - stats.nct.cdf(critical, df, ncp) + stats.nct.cdf(-critical, df, ncp)
    return _scalar_or_array(power)
