"""Plug-in estimation and influence function variance.

For an estimand r(psi1, psi0) of the counterfactual means, the efficient
influence function of the plug-in estimator in a randomised trial is

    IF_i = r_1 * (A_i / pi * (Y_i - psi1_i) + psi1_i - psi1)
         + r_0 * ((1 - A_i) / (1 - pi) * (Y_i - psi0_i) + psi0_i - psi0)

where r_1, r_0 are the partial derivatives evaluated at (psi1, psi0) and
pi is the probability of exposure. The variance of the estimate is
mean(IF^2) / n.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from numpy.typing import NDArray

from ..core.base import NumericalWarning, ValidationError
from .estimand import bind_by_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class InfluenceFunctionResult:
    """Estimate, variance and the per-observation influence values."""

    estimate: float
    standard_error: float
    variance: float
    psi0: float
    psi1: float
    deriv0: float
    deriv1: float
    influence_function: NDArray[np.float64]
    warnings: tuple[str, ...] = ()


def empirical_exposure_prob(exposure: NDArray[Any]) -> float:
    """Proportion of exposed observations."""
    return float(np.mean(np.asarray(exposure, dtype=float) == 1))


def _warn(message: str, collected: list[str]) -> None:
    warnings.warn(message, NumericalWarning, stacklevel=3)
    logger.warning(message)
    collected.append(message)


def _as_float(value: Any, name: str) -> float:
    try:
        return float(np.asarray(value, dtype=float))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must return a scalar, got {value!r}") from e


def _evaluate(
    fun: Callable[[Any, Any], Any],
    at: tuple[np.float64, np.float64],
    name: str,
    collected: list[str],
) -> float:
    try:
        value = bind_by_name(fun)(*at)
    except ZeroDivisionError:
        _warn(f"{name} divides by zero at (psi1, psi0) = ({at[0]:.4g}, {at[1]:.4g})", collected)
        return float("nan")
    return _as_float(value, name)


def estimate_influence(
    psi0: NDArray[Any],
    psi1: NDArray[Any],
    exposure: NDArray[Any],
    outcome: NDArray[Any],
    exposure_prob: float,
    estimand_fun: Callable[[Any, Any], Any],
    deriv0: Callable[[Any, Any], Any],
    deriv1: Callable[[Any, Any], Any],
    psi0_hat: float | None = None,
    psi1_hat: float | None = None,
    tolerance: float = 1e-8,
) -> InfluenceFunctionResult:
    """Plug-in estimate of r(psi1, psi0) and its influence function variance.

    Args:
        psi0: Predicted means under exposure 0, one per observation
        psi1: Predicted means under exposure 1, one per observation
        exposure: Exposure indicator coded 0/1
        outcome: Observed outcome
        exposure_prob: Probability of exposure, strictly in (0, 1)
        estimand_fun: r(psi1, psi0)
        deriv0: d r / d psi0
        deriv1: d r / d psi1
        psi0_hat: Counterfactual control mean; defaults to mean(psi0)
        psi1_hat: Counterfactual exposed mean; defaults to mean(psi1)
        tolerance: Absolute size below which psi0_hat counts as zero

    Returns:
        InfluenceFunctionResult

    Raises:
        ValidationError: If inputs have mismatched lengths or exposure_prob
            is outside (0, 1)
    """
    psi0 = np.asarray(psi0, dtype=float)
    psi1 = np.asarray(psi1, dtype=float)
    a = np.asarray(exposure, dtype=float)
    y = np.asarray(outcome, dtype=float)

    n = len(y)
    if not (len(psi0) == len(psi1) == len(a) == n):
        raise ValidationError(
            f"psi0 ({len(psi0)}), psi1 ({len(psi1)}), exposure ({len(a)}) and "
            f"outcome ({n}) must have the same length"
        )
    if n == 0:
        raise ValidationError("Cannot estimate from zero observations")
    if not 0 < exposure_prob < 1:
        raise ValidationError(
            f"exposure_prob must be strictly between 0 and 1, got {exposure_prob}"
        )

    collected: list[str] = []

    psi0_hat = float(np.mean(psi0)) if psi0_hat is None else float(psi0_hat)
    psi1_hat = float(np.mean(psi1)) if psi1_hat is None else float(psi1_hat)

    if abs(psi0_hat) < tolerance:
        _warn(
            f"Counterfactual control mean psi0 = {psi0_hat:.3g} is numerically zero; "
            "ratio type estimands and their variance are unstable",
            collected,
        )

    at = (np.float64(psi1_hat), np.float64(psi0_hat))
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        estimate = _evaluate(estimand_fun, at, "estimand_fun", collected)
        d0 = _evaluate(deriv0, at, "estimand_fun_deriv0", collected)
        d1 = _evaluate(deriv1, at, "estimand_fun_deriv1", collected)

        influence = d1 * (a / exposure_prob * (y - psi1) + psi1 - psi1_hat) + d0 * (
            (1 - a) / (1 - exposure_prob) * (y - psi0) + psi0 - psi0_hat
        )
        variance = float(np.mean(influence**2) / n)

    if not np.isfinite(estimate):
        _warn(f"Estimate is not finite ({estimate})", collected)
    if not (np.isfinite(d0) and np.isfinite(d1)):
        _warn(
            f"Estimand derivatives are not finite at (psi1, psi0) = "
            f"({psi1_hat:.4g}, {psi0_hat:.4g}): d0={d0}, d1={d1}",
            collected,
        )
    if not np.isfinite(variance):
        _warn(f"Influence function variance is not finite ({variance})", collected)

    return InfluenceFunctionResult(
        estimate=estimate,
        standard_error=float(np.sqrt(variance)),
        variance=variance,
        psi0=psi0_hat,
        psi1=psi1_hat,
        deriv0=d0,
        deriv1=d1,
        influence_function=influence,
        warnings=tuple(collected),
    )
