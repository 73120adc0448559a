"""Candidate regression learners for prognostic modelling.

Every learner is a scikit-learn estimator template plus an optional grid of
hyperparameters. Learners are fitted through a formula: patsy builds the
design matrix, the template is cloned, configured and fitted on it.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from patsy import PatsyError, build_design_matrices, dmatrices
from sklearn.base import BaseEstimator as SklearnBaseEstimator
from sklearn.base import clone
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import ParameterGrid
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import SplineTransformer, StandardScaler
from sklearn.svm import SVR

from ..core.base import IncompatibleData, ValidationError

Grid = Union[Mapping[str, Sequence[Any]], Sequence[Mapping[str, Any]], pd.DataFrame, None]


def _python_scalar(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


def _design_frame(design: pd.DataFrame) -> pd.DataFrame:
    # scikit-learn estimators fit their own intercept
    return design.drop(columns="Intercept", errors="ignore")


@dataclass(frozen=True)
class LearnerSpec:
    """A named estimator template with an optional hyperparameter grid.

    Attributes:
        name: Unique learner name
        model: Unfitted scikit-learn regressor used as a template
        grid: None (fixed configuration), a dict of lists expanded as a
            Cartesian product, a list of dicts, or a data frame whose rows
            are configurations
    """

    name: str
    model: SklearnBaseEstimator
    grid: Grid = None

    def configurations(self) -> list[dict[str, Any]]:
        """Hyperparameter configurations to evaluate, in grid order."""
        if self.grid is None:
            return [{}]
        if isinstance(self.grid, pd.DataFrame):
            return [
                {k: _python_scalar(v) for k, v in row.items()}
                for row in self.grid.to_dict(orient="records")
            ]
        if isinstance(self.grid, Mapping):
            return [dict(params) for params in ParameterGrid(dict(self.grid))]
        return [dict(params) for params in self.grid]

    def fit(
        self, data: pd.DataFrame, formula: str, params: Optional[Mapping[str, Any]] = None
    ) -> FittedLearner:
        """Fit a clone of the template with ``params`` on ``data``.

        Raises:
            IncompatibleData: If the formula cannot be evaluated on ``data``
        """
        params = dict(params or {})
        try:
            y, X = dmatrices(formula, data, return_type="dataframe", NA_action="raise")
        except PatsyError as e:
            raise IncompatibleData(
                f"Formula {formula!r} cannot be evaluated on the data: {e}"
            ) from e

        estimator = clone(self.model)
        if params:
            estimator.set_params(**params)
        estimator.fit(_design_frame(X), np.asarray(y).ravel())

        return FittedLearner(
            name=self.name,
            params=params,
            estimator=estimator,
            formula=formula,
            design_info=X.design_info,
        )


@dataclass(frozen=True, eq=False)
class FittedLearner:
    """A learner fitted on data, able to predict on new data."""

    name: str
    params: dict[str, Any]
    estimator: SklearnBaseEstimator
    formula: str
    design_info: Any = field(repr=False)

    def predict(self, newdata: pd.DataFrame) -> NDArray[np.float64]:
        """Predict the response for every row of ``newdata``.

        Raises:
            IncompatibleData: If ``newdata`` lacks the learner's predictors
        """
        try:
            (X,) = build_design_matrices(
                [self.design_info], newdata, return_type="dataframe", NA_action="raise"
            )
        except PatsyError as e:
            raise IncompatibleData(
                f"Cannot predict with learner '{self.name}' on the data: {e}"
            ) from e
        return np.asarray(self.estimator.predict(_design_frame(X)), dtype=float)


def linear_learner() -> LearnerSpec:
    """Ordinary least squares."""
    return LearnerSpec(name="lm", model=LinearRegression())


def spline_learner(n_knots: int = 5, degree: int = 3) -> LearnerSpec:
    """Additive cubic regression splines, a stand-in for MARS."""
    model = Pipeline(
        [
            ("spline", SplineTransformer(n_knots=n_knots, degree=degree)),
            ("linear", LinearRegression()),
        ]
    )
    return LearnerSpec(name="spline", model=model)


def gbt_learner(grid: Grid = None, random_state: int = 0) -> LearnerSpec:
    """Gradient boosted trees tuned over the number of trees."""
    if grid is None:
        grid = {"n_estimators": list(range(25, 501, 25)), "max_depth": [3]}
    model = GradientBoostingRegressor(learning_rate=0.1, random_state=random_state)
    return LearnerSpec(name="gbt", model=model, grid=grid)


def random_forest_learner(grid: Grid = None, random_state: int = 0) -> LearnerSpec:
    """Random forest regression."""
    if grid is None:
        grid = {"min_samples_leaf": [1, 5]}
    model = RandomForestRegressor(n_estimators=200, random_state=random_state)
    return LearnerSpec(name="rf", model=model, grid=grid)


def svr_learner(grid: Grid = None) -> LearnerSpec:
    """Support vector regression with an RBF kernel on standardized features."""
    if grid is None:
        grid = {"svr__C": [0.1, 1.0, 10.0]}
    model = Pipeline([("scale", StandardScaler()), ("svr", SVR())])
    return LearnerSpec(name="svr", model=model, grid=grid)


def default_learners() -> dict[str, LearnerSpec]:
    """Learners searched by default: splines, linear model, boosted trees."""
    learners = [spline_learner(), linear_learner(), gbt_learner()]
    return {learner.name: learner for learner in learners}


def normalize_learners(
    learners: Mapping[str, Any] | Sequence[LearnerSpec] | None,
) -> list[LearnerSpec]:
    """Turn the accepted learner collections into an ordered list of specs.

    Accepts a mapping of name to ``LearnerSpec``, a mapping of name to
    ``{"model": ..., "grid": ...}``, or a sequence of ``LearnerSpec``.

    Raises:
        ValidationError: If names are duplicated or entries malformed
    """
    if learners is None:
        return list(default_learners().values())

    specs: list[LearnerSpec] = []
    if isinstance(learners, Mapping):
        for name, entry in learners.items():
            if isinstance(entry, LearnerSpec):
                spec = entry if entry.name == name else LearnerSpec(name, entry.model, entry.grid)
            elif isinstance(entry, Mapping) and "model" in entry:
                spec = LearnerSpec(str(name), entry["model"], entry.get("grid"))
            elif isinstance(entry, SklearnBaseEstimator):
                spec = LearnerSpec(str(name), entry)
            else:
                raise ValidationError(
                    f"Learner '{name}' must be a LearnerSpec, an estimator or "
                    "a mapping with 'model' and 'grid'"
                )
            specs.append(spec)
    else:
        for entry in learners:
            if not isinstance(entry, LearnerSpec):
                raise ValidationError(
                    f"Learners must be LearnerSpec instances, got {type(entry).__name__}"
                )
            specs.append(entry)

    names = [spec.name for spec in specs]
    duplicated = sorted({name for name in names if names.count(name) > 1})
    if duplicated:
        raise ValidationError(f"Learner names must be unique, duplicated: {duplicated}")

    for spec in specs:
        if not (hasattr(spec.model, "fit") and hasattr(spec.model, "predict")):
            raise ValidationError(f"Learner '{spec.name}' model must implement fit/predict")

    return specs
