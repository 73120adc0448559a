"""Discrete super learner: pick the single best learner by cross-validated RMSE.

Every learner configuration is fitted on the training part of each fold and
scored on the held-out part. The configuration with the lowest mean RMSE
wins and is refitted on all of the data. Folds are built once and shared by
all candidates, so the scores are comparable and do not depend on whether
the candidates run sequentially or on a worker pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from numpy.typing import NDArray
from patsy import PatsyError, dmatrices
from sklearn.metrics import mean_squared_error

from shared.config import PostcardConfig

from ..core.base import (
    EmptyLearnerSet,
    IncompatibleData,
    ValidationError,
    log_at,
    resolve_verbosity,
)
from ..models.formula import check_formula_columns, expand_dot
from .cross_fitting import CrossFitSplits, create_folds
from .learners import FittedLearner, LearnerSpec, normalize_learners

logger = logging.getLogger(__name__)

__all__ = ["SelectionResult", "SuperLearnerSelector", "fit_best_learner"]


@dataclass(frozen=True, eq=False)
class SelectionResult:
    """Outcome of the cross-validated comparison of learners.

    Attributes:
        ranking: One row per ranked configuration, best first, with columns
            learner, config_id, params, mean_rmse, std_err, n_folds, rank
        fold_scores: One row per (learner, configuration, fold) with the RMSE
            or the error message of a failed fit
        best_learner: Spec of the winning learner
        best_params: Hyperparameters of the winning configuration
        splits: Folds used for the comparison
    """

    ranking: pd.DataFrame
    fold_scores: pd.DataFrame
    best_learner: LearnerSpec
    best_params: dict[str, Any]
    splits: CrossFitSplits

    @property
    def best_name(self) -> str:
        return self.best_learner.name


def _evaluate_candidate(
    spec: LearnerSpec,
    params: dict[str, Any],
    formula: str,
    data: pd.DataFrame,
    y: NDArray[Any],
    train_idx: NDArray[Any],
    val_idx: NDArray[Any],
) -> tuple[Optional[float], Optional[str], float]:
    """Fit one configuration on one fold - designed to be called in parallel.

    Returns:
        Tuple of (rmse, error_message, fold_timing)
    """
    start_time = time.perf_counter()
    try:
        fitted = spec.fit(data.iloc[train_idx], formula, params)
        predictions = fitted.predict(data.iloc[val_idx])
        rmse = float(np.sqrt(mean_squared_error(y[val_idx], predictions)))
        if not np.isfinite(rmse):
            raise ValueError("non-finite RMSE")
    except Exception as e:  # a failing candidate must not abort the selection
        return None, f"{type(e).__name__}: {e}", time.perf_counter() - start_time
    return rmse, None, time.perf_counter() - start_time


class SuperLearnerSelector:
    """Select the best learner among candidates by k-fold cross-validation.

    Attributes:
        learners: Ordered candidate learner specs
        cv_folds: Number of cross-validation folds
        random_state: Seed for the fold assignment
        n_jobs: joblib workers for the (learner x configuration x fold) grid
        parallel_backend: joblib backend
        verbose: 0 silent, 1 milestones, 2 per-candidate diagnostics
        selection_: SelectionResult of the last call to ``evaluate``
    """

    def __init__(
        self,
        learners: Mapping[str, Any] | Sequence[LearnerSpec] | None = None,
        cv_folds: int | None = None,
        random_state: int | None = None,
        n_jobs: int | None = None,
        parallel_backend: str | None = None,
        verbose: int | None = None,
        config: PostcardConfig | None = None,
    ) -> None:
        if config is None:
            config = PostcardConfig()

        if learners is not None and len(learners) == 0:
            raise EmptyLearnerSet("No learners were given to select from")

        self.learners = normalize_learners(learners)
        self.cv_folds = cv_folds if cv_folds is not None else config.cv_prog_folds
        self.random_state = random_state if random_state is not None else config.random_state
        self.n_jobs = n_jobs if n_jobs is not None else config.n_jobs
        self.parallel_backend = parallel_backend or config.parallel_backend
        self.verbose = resolve_verbosity(verbose, config)

        self.selection_: SelectionResult | None = None

    def evaluate(self, data: pd.DataFrame, formula: str) -> SelectionResult:
        """Cross-validate every learner configuration and rank them.

        Args:
            data: Training data, e.g. historical controls
            formula: patsy formula for the learners; ``.`` is expanded

        Returns:
            SelectionResult with the ranking and the winning configuration

        Raises:
            IncompatibleData: If the formula references absent columns
            EmptyLearnerSet: If every candidate failed
        """
        if not isinstance(data, pd.DataFrame):
            raise ValidationError(f"data must be a pandas DataFrame, got {type(data).__name__}")

        formula = expand_dot(formula, data)
        check_formula_columns(formula, data)

        try:
            y_design, _ = dmatrices(formula, data, return_type="dataframe", NA_action="raise")
        except PatsyError as e:
            raise IncompatibleData(f"Formula {formula!r} cannot be evaluated on the data: {e}") from e
        y = np.asarray(y_design).ravel()

        # Folds are fixed before dispatch
        splits = create_folds(data, self.cv_folds, random_state=self.random_state)

        candidates = [
            (learner_idx, spec, config_idx, params)
            for learner_idx, spec in enumerate(self.learners)
            for config_idx, params in enumerate(spec.configurations())
        ]
        if not candidates:
            raise EmptyLearnerSet("The learners define no configurations to evaluate")

        log_at(logger, self.verbose, 1, "Fitting learners")
        for spec in self.learners:
            log_at(logger, self.verbose, 1, "  * %s", spec.name)

        tasks = [
            (candidate, fold_idx, train_idx, val_idx)
            for candidate in candidates
            for fold_idx, (train_idx, val_idx) in enumerate(splits)
        ]
        outcomes = Parallel(n_jobs=self.n_jobs, backend=self.parallel_backend)(
            delayed(_evaluate_candidate)(spec, params, formula, data, y, train_idx, val_idx)
            for (_, spec, _, params), _, train_idx, val_idx in tasks
        )

        fold_rows = []
        for ((learner_idx, spec, config_idx, params), fold_idx, _, _), (
            rmse,
            error,
            timing,
        ) in zip(tasks, outcomes):
            if error is not None:
                logger.warning(
                    "Learner '%s' (config %d, fold %d) failed and is excluded: %s",
                    spec.name,
                    config_idx + 1,
                    fold_idx + 1,
                    error,
                )
            fold_rows.append(
                {
                    "learner_idx": learner_idx,
                    "learner": spec.name,
                    "config_id": config_idx + 1,
                    "params": params,
                    "fold": fold_idx + 1,
                    "rmse": rmse,
                    "error": error,
                    "seconds": timing,
                }
            )
        fold_scores = pd.DataFrame(fold_rows)

        ranking = self._rank(fold_scores)
        if ranking.empty:
            raise EmptyLearnerSet("Every candidate learner failed; nothing to select")

        best = ranking.iloc[0]
        best_spec = self.learners[int(best["learner_idx"])]
        best_params = dict(best["params"])

        log_at(
            logger,
            self.verbose,
            1,
            "Model with lowest RMSE: %s (config %d, RMSE %.4f)",
            best_spec.name,
            int(best["config_id"]),
            float(best["mean_rmse"]),
        )

        self.selection_ = SelectionResult(
            ranking=ranking.drop(columns="learner_idx"),
            fold_scores=fold_scores.drop(columns="learner_idx"),
            best_learner=best_spec,
            best_params=best_params,
            splits=splits,
        )
        return self.selection_

    def _rank(self, fold_scores: pd.DataFrame) -> pd.DataFrame:
        rows = []
        keys = ["learner_idx", "config_id"]
        for (learner_idx, config_id), group in fold_scores.groupby(keys, sort=True):
            scores = group["rmse"].dropna().to_numpy(dtype=float)
            name = group["learner"].iloc[0]
            if len(scores) == 0:
                logger.warning(
                    "Learner '%s' (config %d) failed on every fold and is not ranked",
                    name,
                    config_id,
                )
                continue
            if len(scores) < len(group):
                logger.warning(
                    "Learner '%s' (config %d) ranked on %d of %d folds",
                    name,
                    config_id,
                    len(scores),
                    len(group),
                )
            mean_rmse = float(scores.mean())
            std_err = float(scores.std(ddof=1) / np.sqrt(len(scores))) if len(scores) > 1 else np.nan
            log_at(
                logger,
                self.verbose,
                2,
                "%s (config %d, %s): mean RMSE %.4f over %d folds",
                name,
                config_id,
                group["params"].iloc[0] or "fixed",
                mean_rmse,
                len(scores),
            )
            rows.append(
                {
                    "learner_idx": learner_idx,
                    "learner": name,
                    "config_id": config_id,
                    "params": group["params"].iloc[0],
                    "mean_rmse": mean_rmse,
                    "std_err": std_err,
                    "n_folds": len(scores),
                }
            )

        ranking = pd.DataFrame(
            rows,
            columns=["learner_idx", "learner", "config_id", "params", "mean_rmse", "std_err", "n_folds"],
        )
        # Stable sort keeps the input order among ties
        ranking = ranking.sort_values("mean_rmse", kind="mergesort").reset_index(drop=True)
        ranking["rank"] = np.arange(1, len(ranking) + 1)
        return ranking

    def select_best(self, data: pd.DataFrame, formula: str) -> FittedLearner:
        """Evaluate the candidates and refit the winner on all of ``data``."""
        selection = self.evaluate(data, formula)
        return selection.best_learner.fit(
            data, expand_dot(formula, data), selection.best_params
        )


def fit_best_learner(
    data: pd.DataFrame,
    formula: str,
    cv_folds: int | None = None,
    learners: Mapping[str, Any] | Sequence[LearnerSpec] | None = None,
    verbose: int | None = None,
    random_state: int | None = None,
    n_jobs: int | None = None,
    config: PostcardConfig | None = None,
) -> FittedLearner:
    """Find the learner with the lowest cross-validated RMSE and fit it.

    Args:
        data: Training data, e.g. historical control observations
        formula: patsy formula, e.g. ``"Y ~ ."``
        cv_folds: Number of folds (default from config, 5)
        learners: Candidate learners (default ``default_learners()``)
        verbose: 0, 1 or 2
        random_state: Seed for the fold assignment
        n_jobs: joblib workers for the candidate grid
        config: Explicit configuration supplying defaults

    Returns:
        The winning learner fitted on all of ``data``

    Example:
        >>> fit = fit_best_learner(dat_hist, "Y ~ .")  # doctest: +SKIP
        >>> fit.predict(dat_rct)  # doctest: +SKIP
    """
    selector = SuperLearnerSelector(
        learners=learners,
        cv_folds=cv_folds,
        random_state=random_state,
        n_jobs=n_jobs,
        verbose=verbose,
        config=config,
    )
    return selector.select_best(data, formula)
