"""Estimation of marginal effects in GLMs for randomised trials.

This module provides plug-in estimation with influence function variance
(``rctglm``), its prognostic score adjusted variant and the building blocks
they are made of.
"""

from .counterfactual import (
    oos_counterfactual_means,
    predict_counterfactual_mean,
    predict_counterfactual_means,
)
from .estimand import (
    BuiltInEstimand,
    CustomEstimand,
    EstimandSpec,
    ResolvedEstimand,
    bind_by_name,
    default_estimand_funs,
    resolve_estimand,
    to_estimand_spec,
)
from .influence import InfluenceFunctionResult, empirical_exposure_prob, estimate_influence
from .prognostic import default_prognostic_formula, rctglm_with_prognosticscore
from .rctglm import RctGlmEngine, rctglm, validate_binary_exposure

__all__ = [
    "BuiltInEstimand",
    "CustomEstimand",
    "EstimandSpec",
    "InfluenceFunctionResult",
    "RctGlmEngine",
    "ResolvedEstimand",
    "bind_by_name",
    "default_estimand_funs",
    "default_prognostic_formula",
    "empirical_exposure_prob",
    "estimate_influence",
    "oos_counterfactual_means",
    "predict_counterfactual_mean",
    "predict_counterfactual_means",
    "rctglm",
    "rctglm_with_prognosticscore",
    "resolve_estimand",
    "to_estimand_spec",
    "validate_binary_exposure",
]
