"""Covariate adjustment for a prognostic score learned on historical data.

A prognostic model predicting the control outcome from baseline covariates
is selected among candidate learners on historical data. Its predictions on
the trial data enter the GLM as an additional covariate, which reduces the
variance of the estimate when the score is informative.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Callable

import pandas as pd

from shared.config import PostcardConfig

from ..core.base import (
    IncompatibleData,
    PrognosticInfo,
    RctGlmResult,
    ResponseNotFound,
    ValidationError,
    log_at,
    resolve_verbosity,
)
from ..ml.learners import LearnerSpec
from ..ml.super_learner import SuperLearnerSelector
from ..models.formula import add_term, expand_dot, response_name
from ..models.glm import FamilyLike
from .rctglm import RctGlmEngine

logger = logging.getLogger(__name__)

PROGNOSTIC_SCORE_COLUMN = "prog"


def default_prognostic_formula(formula: str, data_hist: pd.DataFrame) -> str:
    """``response ~ <all other columns of data_hist>``.

    Raises:
        ResponseNotFound: If the response of ``formula`` is not in ``data_hist``
    """
    response = response_name(formula)
    if response not in data_hist.columns:
        raise ResponseNotFound(
            f"The response '{response}' of {formula!r} is not a column of data_hist; "
            "specify prog_formula manually"
        )
    return expand_dot(f"{response} ~ .", data_hist)


def rctglm_with_prognosticscore(
    formula: str,
    exposure_indicator: str,
    data: pd.DataFrame,
    data_hist: pd.DataFrame,
    family: FamilyLike = "gaussian",
    estimand_fun: str | Callable[[Any, Any], Any] = "ate",
    estimand_fun_deriv0: Callable[[Any, Any], Any] | None = None,
    estimand_fun_deriv1: Callable[[Any, Any], Any] | None = None,
    exposure_prob: float | None = None,
    prog_formula: str | None = None,
    cv_prog_folds: int | None = None,
    learners: Mapping[str, Any] | Sequence[LearnerSpec] | None = None,
    cv_variance: bool = False,
    cv_variance_folds: int | None = None,
    random_state: int | None = None,
    n_jobs: int | None = None,
    verbose: int | None = None,
    config: PostcardConfig | None = None,
) -> RctGlmResult:
    """Estimate an estimand with adjustment for a learned prognostic score.

    Args:
        formula: Model formula for the trial data; ``+ prog`` is appended
        exposure_indicator: Name of the binary exposure column in ``data``
        data: Trial data; not modified
        data_hist: Historical (control) data to learn the prognostic model on
        family: GLM family for the trial model
        estimand_fun: "ate", "rate_ratio" or a callable r(psi1, psi0)
        estimand_fun_deriv0: Optional d r / d psi0
        estimand_fun_deriv1: Optional d r / d psi1
        exposure_prob: Assumed randomisation probability
        prog_formula: Formula of the prognostic model; defaults to the
            response regressed on every other column of ``data_hist``
        cv_prog_folds: Folds for selecting the prognostic model
        learners: Candidate learners (default ``default_learners()``)
        cv_variance: Use out-of-sample predictions for the variance
        cv_variance_folds: Folds for ``cv_variance``
        random_state: Seed for all fold assignments
        n_jobs: joblib workers for the learner search
        verbose: 0, 1 or 2
        config: Explicit configuration supplying defaults

    Returns:
        RctGlmResult with ``prognostic_info`` set

    Raises:
        ResponseNotFound: If the response is not in ``data_hist``
        IncompatibleData: If ``data`` lacks the prognostic model's predictors
        EmptyLearnerSet: If no learner could be fitted
    """
    if config is None:
        config = PostcardConfig()
    verbose = resolve_verbosity(verbose, config)

    if not isinstance(data_hist, pd.DataFrame):
        raise ValidationError(
            f"data_hist must be a pandas DataFrame, got {type(data_hist).__name__}"
        )
    if not isinstance(data, pd.DataFrame):
        raise ValidationError(f"data must be a pandas DataFrame, got {type(data).__name__}")
    if PROGNOSTIC_SCORE_COLUMN in data.columns:
        raise ValidationError(
            f"data already has a column named '{PROGNOSTIC_SCORE_COLUMN}'"
        )

    if prog_formula is None:
        prog_formula = default_prognostic_formula(formula, data_hist)
    else:
        prog_formula = expand_dot(prog_formula, data_hist)

    selector = SuperLearnerSelector(
        learners=learners,
        cv_folds=cv_prog_folds,
        random_state=random_state,
        n_jobs=n_jobs,
        verbose=verbose,
        config=config,
    )
    log_at(
        logger,
        verbose,
        1,
        "Fitting prognostic model with formula %r on %d historical observations",
        prog_formula,
        len(data_hist),
    )
    fitted_learner = selector.select_best(data_hist, prog_formula)
    selection = selector.selection_

    try:
        scores = fitted_learner.predict(data)
    except IncompatibleData as e:
        raise IncompatibleData(
            f"Trial data lacks predictors of the prognostic model {prog_formula!r}: {e}"
        ) from e

    data_with_prog = data.copy()
    data_with_prog[PROGNOSTIC_SCORE_COLUMN] = scores

    formula_with_prog = add_term(expand_dot(formula, data), PROGNOSTIC_SCORE_COLUMN)
    log_at(logger, verbose, 1, "Adjusting for prognostic score with formula %r", formula_with_prog)

    engine = RctGlmEngine(config=config, verbose=verbose, random_state=random_state)
    result = engine.fit(
        formula=formula_with_prog,
        exposure_indicator=exposure_indicator,
        data=data_with_prog,
        family=family,
        estimand_fun=estimand_fun,
        estimand_fun_deriv0=estimand_fun_deriv0,
        estimand_fun_deriv1=estimand_fun_deriv1,
        exposure_prob=exposure_prob,
        cv_variance=cv_variance,
        cv_variance_folds=cv_variance_folds,
    )

    info = PrognosticInfo(
        learner_name=fitted_learner.name,
        params=dict(fitted_learner.params),
        cv_folds=selector.cv_folds,
        formula=prog_formula,
        data_hist=data_hist,
        ranking=selection.ranking,
        fitted_learner=fitted_learner,
        score_column=PROGNOSTIC_SCORE_COLUMN,
    )
    return result.with_prognostic_info(info)
