"""Counterfactual mean predictions from a fitted GLM.

For every observation the model predicts the mean outcome had the exposure
been set to 0 and to 1, either with the model fitted on all of the data or
out-of-sample with models refitted on the other cross-validation folds.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ..core.base import (
    CounterfactualPrediction,
    EstimationError,
    ExposureColumnNotInModel,
    log_at,
)
from ..ml.cross_fitting import create_folds
from ..models.glm import GlmModel

logger = logging.getLogger(__name__)


def _check_exposure_in_model(model: GlmModel, exposure_col: str) -> None:
    if exposure_col not in model.predictors:
        raise ExposureColumnNotInModel(
            f"'{exposure_col}' is not in the model {model.formula!r}. "
            "Specify the name of a binary predictor in the model"
        )


def predict_counterfactual_mean(
    model: GlmModel, exposure_col: str, group_val: int, newdata: pd.DataFrame
) -> np.ndarray:
    """Predict response-scale means with the exposure set to ``group_val``."""
    _check_exposure_in_model(model, exposure_col)
    # Copy so the caller's frame is never modified
    forced = newdata.copy()
    forced[exposure_col] = group_val
    return model.predict(forced, response_scale=True)


def predict_counterfactual_means(
    model: GlmModel, exposure_col: str, data: pd.DataFrame
) -> CounterfactualPrediction:
    """In-sample counterfactual means for every row of ``data``.

    Args:
        model: Fitted GLM including ``exposure_col`` as a predictor
        exposure_col: Name of the binary exposure column
        data: Rows to predict for

    Returns:
        CounterfactualPrediction with psi0 (exposure 0) and psi1 (exposure 1)

    Raises:
        ExposureColumnNotInModel: If ``exposure_col`` is not a model predictor
    """
    return CounterfactualPrediction(
        psi0=predict_counterfactual_mean(model, exposure_col, 0, data),
        psi1=predict_counterfactual_mean(model, exposure_col, 1, data),
        source="in_sample",
    )


def oos_counterfactual_means(
    model: GlmModel,
    exposure_col: str,
    data: pd.DataFrame,
    cv_folds: int = 10,
    random_state: int | None = None,
    verbose: int = 0,
) -> CounterfactualPrediction:
    """Out-of-sample counterfactual means via stratified k-fold refitting.

    Each fold refits ``model``'s formula and family on the remaining folds
    and predicts the held-out rows only, so no row's prediction depends on a
    model that saw that row.

    Args:
        model: Fitted GLM whose specification is refitted per fold
        exposure_col: Name of the binary exposure column, used for stratification
        data: The data ``model`` was fitted on
        cv_folds: Number of folds
        random_state: Seed for the fold assignment
        verbose: Verbosity level

    Returns:
        CounterfactualPrediction in the original row order
    """
    _check_exposure_in_model(model, exposure_col)

    splits = create_folds(
        data, cv_folds, stratify_by=exposure_col, random_state=random_state
    )
    log_at(
        logger,
        verbose,
        1,
        "Estimating variance from out-of-sample predictions in %d stratified folds",
        cv_folds,
    )

    n_samples = len(data)
    psi0 = np.full(n_samples, np.nan)
    psi1 = np.full(n_samples, np.nan)

    for fold_idx, (train_idx, val_idx) in enumerate(splits):
        model_train = model.refit(data.iloc[train_idx])
        test = data.iloc[val_idx]
        psi0[val_idx] = predict_counterfactual_mean(model_train, exposure_col, 0, test)
        psi1[val_idx] = predict_counterfactual_mean(model_train, exposure_col, 1, test)
        log_at(
            logger,
            verbose,
            2,
            "Fold %d: trained on %d rows, predicted %d rows",
            fold_idx + 1,
            len(train_idx),
            len(val_idx),
        )

    if np.isnan(psi0).any() or np.isnan(psi1).any():
        raise EstimationError("Some observations are missing out-of-sample predictions")

    return CounterfactualPrediction(psi0=psi0, psi1=psi1, source="cross_validated")
