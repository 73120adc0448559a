"""Base exceptions, result records and verbosity handling.

This module provides the error taxonomy shared by every component and the
immutable records returned by the estimation functions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats

if TYPE_CHECKING:
    from shared.config import PostcardConfig

    from ..estimators.estimand import ResolvedEstimand
    from ..ml.learners import FittedLearner
    from ..models.glm import GlmModel


class PostcardError(Exception):
    """Base exception class for postcard specific errors."""

    pass


class ValidationError(PostcardError):
    """Raised when user input fails validation before any fitting starts."""

    pass


class NonBinaryExposure(ValidationError):
    """Raised when the exposure column is not coded as 0 and 1."""

    pass


class ExposureColumnNotInModel(ValidationError):
    """Raised when the exposure column is not a predictor of the fitted model."""

    pass


class IncompatibleData(ValidationError):
    """Raised when a formula references columns that a data frame lacks."""

    pass


class ResponseNotFound(IncompatibleData):
    """Raised when the response of a formula is missing from a data frame."""

    pass


class UnsupportedExpression(PostcardError):
    """Raised when an estimand function cannot be differentiated symbolically.

    Supply ``estimand_fun_deriv0`` and ``estimand_fun_deriv1`` manually instead.
    """

    pass


class EmptyLearnerSet(PostcardError):
    """Raised when there is no learner left to select from."""

    pass


class EstimationError(PostcardError):
    """Raised when an underlying fitting routine fails."""

    pass


class NumericalWarning(RuntimeWarning):
    """Warning for numerical anomalies that do not invalidate the fit."""

    pass


def resolve_verbosity(
    verbose: int | None, config: PostcardConfig | None = None
) -> int:
    """Return the verbosity level to use for a call.

    An explicit ``verbose`` wins over the value carried by ``config``.
    """
    if verbose is None:
        verbose = config.verbose if config is not None else 0
    if verbose not in (0, 1, 2):
        raise ValidationError(f"verbose must be 0, 1 or 2, got {verbose!r}")
    return int(verbose)


def log_at(
    logger: logging.Logger, verbose: int, level: int, message: str, *args: Any
) -> None:
    """Log ``message`` at INFO when ``verbose`` reaches ``level``."""
    if verbose >= level:
        logger.info(message, *args)


@dataclass(frozen=True, eq=False)
class CounterfactualPrediction:
    """Per-observation predicted means with the exposure forced to 0 and 1."""

    psi0: NDArray[np.float64]
    psi1: NDArray[np.float64]
    source: str = "in_sample"  # 'in_sample' or 'cross_validated'

    def __post_init__(self) -> None:
        if len(self.psi0) != len(self.psi1):
            raise ValueError("psi0 and psi1 must have the same length")

    def __len__(self) -> int:
        return len(self.psi0)

    def to_frame(self) -> pd.DataFrame:
        """Return the predictions as a two-column data frame."""
        return pd.DataFrame({"psi0": self.psi0, "psi1": self.psi1})


@dataclass(frozen=True, eq=False)
class PrognosticInfo:
    """Provenance of the prognostic model used for covariate adjustment."""

    learner_name: str
    params: dict[str, Any]
    cv_folds: int
    formula: str
    data_hist: pd.DataFrame
    ranking: pd.DataFrame
    fitted_learner: FittedLearner
    score_column: str = "prog"

    def __str__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.params.items()) or "defaults"
        return (
            f"Prognostic model: {self.learner_name} ({params}) selected by "
            f"{self.cv_folds}-fold cross-validation on {len(self.data_hist)} "
            f"historical observations\nPrognostic formula: {self.formula}"
        )


@dataclass(frozen=True, eq=False)
class RctGlmResult:
    """Result of plug-in estimation of an estimand in a GLM.

    The record is created once per call and never modified afterwards;
    ``with_prognostic_info`` returns a new record.
    """

    fitted_glm: GlmModel
    estimand_spec: ResolvedEstimand
    exposure_indicator: str
    counterfactual_predictions: CounterfactualPrediction
    variance_predictions: CounterfactualPrediction
    psi0: float  # E[Y(0)]
    psi1: float  # E[Y(1)]
    estimate: float
    standard_error: float
    variance: float
    exposure_prob: float
    exposure_prob_source: str  # 'assumed' or 'empirical'
    influence_function: NDArray[np.float64]
    n_observations: int
    cv_variance: bool = False
    cv_variance_folds: int | None = None
    call: dict[str, Any] = field(default_factory=dict)
    verbose: int = 0
    numerical_warnings: tuple[str, ...] = ()
    prognostic_info: PrognosticInfo | None = None

    @property
    def estimand_name(self) -> str:
        """Name of the estimand ('ate', 'rate_ratio' or the callable's name)."""
        return self.estimand_spec.name

    @property
    def estimand_body(self) -> str:
        """The estimand function body as an expression in psi1 and psi0."""
        return self.estimand_spec.body

    @property
    def estimand_fun(self):
        """The estimand function r(psi1, psi0)."""
        return self.estimand_spec.fun

    @property
    def estimand_fun_deriv0(self):
        """Derivative of the estimand function with respect to psi0."""
        return self.estimand_spec.deriv0

    @property
    def estimand_fun_deriv1(self):
        """Derivative of the estimand function with respect to psi1."""
        return self.estimand_spec.deriv1

    def estimand(self) -> pd.DataFrame:
        """Return the estimate and its standard error as a one-row table."""
        return pd.DataFrame(
            {"Estimate": [self.estimate], "Std. Error": [self.standard_error]}
        )

    def coef(self) -> pd.Series:
        """Coefficients of the underlying GLM fit."""
        return self.fitted_glm.coefficients

    def confidence_interval(self, confidence_level: float = 0.95) -> tuple[float, float]:
        """Wald confidence interval for the estimand.

        Args:
            confidence_level: Coverage of the interval

        Returns:
            Tuple of (lower_bound, upper_bound)
        """
        if not 0 < confidence_level < 1:
            raise ValidationError("Confidence level must be between 0 and 1")
        z = stats.norm.ppf(0.5 + confidence_level / 2)
        return (
            self.estimate - z * self.standard_error,
            self.estimate + z * self.standard_error,
        )

    def with_prognostic_info(self, info: PrognosticInfo) -> RctGlmResult:
        """Return a copy of the result carrying prognostic provenance."""
        return replace(self, prognostic_info=info)

    def summary(self, digits: int = 4) -> str:
        """Summary of the estimand related statistics and the GLM fit.

        Args:
            digits: Number of decimals used for the estimand statistics

        Returns:
            Multi-line summary string
        """
        lower, upper = self.confidence_interval()
        lines = [
            "RctGlmResult Summary",
            "=" * 40,
            f"Counterfactual means, psi0 and psi1, based on groups in column "
            f"{self.exposure_indicator}",
            f"Estimand function r: {self.estimand_body}",
            f"Estimand (r(psi_1, psi_0)) estimate (SE): "
            f"{self.estimate:.{digits}f} ({self.standard_error:.{digits}f})",
            f"95% CI: [{lower:.{digits}f}, {upper:.{digits}f}]",
            f"Exposure probability: {self.exposure_prob:.{digits}f} "
            f"({self.exposure_prob_source})",
            f"Variance: "
            + (
                f"{self.cv_variance_folds}-fold cross-validated influence function"
                if self.cv_variance
                else "in-sample influence function"
            ),
            f"Observations: {self.n_observations}",
        ]
        if self.prognostic_info is not None:
            lines.extend(["", str(self.prognostic_info)])
        if self.numerical_warnings:
            lines.extend(["", "Warnings:"])
            lines.extend(f"  {w}" for w in self.numerical_warnings)
        lines.extend(["", "GLM fit:", str(self.fitted_glm.summary())])
        return "\n".join(lines)

    def __str__(self) -> str:
        return "\n".join(
            [
                "Object of class 'RctGlmResult'",
                "",
                f"Formula: {self.fitted_glm.formula}",
                f"Counterfactual control mean (psi_0=E[Y|X, A=0]) estimate: {self.psi0:.4g}",
                f"Counterfactual treatment mean (psi_1=E[Y|X, A=1]) estimate: {self.psi1:.4g}",
                f"Estimand function r: {self.estimand_body}",
                f"Estimand (r(psi_1, psi_0)) estimate (SE): "
                f"{self.estimate:.4g} ({self.standard_error:.4g})",
            ]
        )


def estimand(result: RctGlmResult) -> pd.DataFrame:
    """Extract the estimate and standard error table from a result."""
    return result.estimand()


def est(result: RctGlmResult) -> pd.DataFrame:
    """Short-hand for :func:`estimand`."""
    return estimand(result)


def prog(result: RctGlmResult) -> PrognosticInfo | None:
    """Extract the prognostic model information from a result."""
    return result.prognostic_info
