"""Machine learning infrastructure for prognostic scores.

This module provides the k-fold splitter shared by the estimators, the
candidate learner backends and the discrete super learner that selects the
prognostic model.
"""

from .cross_fitting import CrossFitSplits, create_folds
from .learners import (
    FittedLearner,
    LearnerSpec,
    default_learners,
    gbt_learner,
    linear_learner,
    random_forest_learner,
    spline_learner,
    svr_learner,
)
from .super_learner import SelectionResult, SuperLearnerSelector, fit_best_learner

__all__ = [
    "CrossFitSplits",
    "FittedLearner",
    "LearnerSpec",
    "SelectionResult",
    "SuperLearnerSelector",
    "create_folds",
    "default_learners",
    "fit_best_learner",
    "gbt_learner",
    "linear_learner",
    "random_forest_learner",
    "spline_learner",
    "svr_learner",
]
