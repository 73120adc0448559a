"""Covariate adjusted estimation of marginal effects in randomised trials.

Plug-in estimation of any estimand of the two counterfactual means in a
GLM, with influence function based variance, optional cross-validated
variance and adjustment for a prognostic score learned on historical data.
"""

__version__ = "0.1.0"

from .core import *
from .data import *
from .estimators import (
    RctGlmEngine,
    default_estimand_funs,
    rctglm,
    rctglm_with_prognosticscore,
)
from .ml import (
    LearnerSpec,
    SuperLearnerSelector,
    default_learners,
    fit_best_learner,
)
from .power import power_gs, power_nc, variance_ancova
from .symbolic import SymbolicDifferentiator, derive

__all__ = [
    "__version__",
    "CounterfactualPrediction",
    "EmptyLearnerSet",
    "EstimationError",
    "ExposureColumnNotInModel",
    "IncompatibleData",
    "LearnerSpec",
    "NonBinaryExposure",
    "NumericalWarning",
    "PostcardError",
    "PrognosticInfo",
    "RctGlmEngine",
    "RctGlmResult",
    "ResponseNotFound",
    "SuperLearnerSelector",
    "SymbolicDifferentiator",
    "UnsupportedExpression",
    "ValidationError",
    "default_estimand_funs",
    "default_learners",
    "derive",
    "est",
    "estimand",
    "fit_best_learner",
    "glm_data",
    "power_gs",
    "power_nc",
    "prog",
    "rctglm",
    "rctglm_with_prognosticscore",
    "variance_ancova",
]
