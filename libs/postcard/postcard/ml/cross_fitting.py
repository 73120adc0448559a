"""K-fold splitting shared by cross-validated variance and the super learner.

Folds are computed once, up front, so every consumer (including parallel
workers) sees identical partitions for a given seed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from sklearn.model_selection import KFold, StratifiedKFold

from ..core.base import ValidationError

__all__ = ["CrossFitSplits", "create_folds"]


@dataclass(frozen=True)
class CrossFitSplits:
    """Training and validation indices for each fold.

    Every row index appears in exactly one validation fold.
    """

    n_folds: int
    n_samples: int
    train_indices: list[NDArray[Any]]
    val_indices: list[NDArray[Any]]
    stratified: bool = False

    def __iter__(self) -> Iterator[tuple[NDArray[Any], NDArray[Any]]]:
        return iter(zip(self.train_indices, self.val_indices))

    def __len__(self) -> int:
        return self.n_folds

    def fold_of(self) -> NDArray[Any]:
        """Validation fold number of every row."""
        folds = np.full(self.n_samples, -1, dtype=int)
        for fold_idx, val_idx in enumerate(self.val_indices):
            folds[val_idx] = fold_idx
        return folds


def create_folds(
    data: pd.DataFrame | int,
    n_folds: int,
    stratify_by: Optional[str | NDArray[Any] | pd.Series] = None,
    random_state: Optional[int] = None,
) -> CrossFitSplits:
    """Partition rows into shuffled folds, optionally stratified.

    Args:
        data: Data frame to split, or the number of rows
        n_folds: Number of folds
        stratify_by: Column name of ``data`` or an array whose levels each
            fold should contain in proportion
        random_state: Seed for the shuffling

    Returns:
        CrossFitSplits with positional indices

    Raises:
        ValidationError: If the number of folds is invalid for the data
    """
    n_samples = data if isinstance(data, int) else len(data)

    if not isinstance(n_folds, (int, np.integer)) or n_folds < 2:
        raise ValidationError(f"Number of folds must be an integer >= 2, got {n_folds!r}")
    if n_folds > n_samples:
        raise ValidationError(
            f"Number of folds ({n_folds}) cannot exceed the number of observations ({n_samples})"
        )

    X = np.zeros((n_samples, 1))

    if stratify_by is not None:
        if isinstance(stratify_by, str):
            if isinstance(data, int):
                raise ValidationError("A column name needs a data frame to stratify on")
            strata = np.asarray(data[stratify_by])
        else:
            strata = np.asarray(stratify_by)
        if len(strata) != n_samples:
            raise ValidationError("Stratification variable has the wrong length")

        _, counts = np.unique(strata, return_counts=True)
        if counts.min() < n_folds:
            raise ValidationError(
                f"Cannot build {n_folds} stratified folds: the smallest group has "
                f"only {counts.min()} observations"
            )
        # Stratify on group assignment
        cv_splitter = StratifiedKFold(
            n_splits=n_folds, shuffle=True, random_state=random_state
        )
        splits = list(cv_splitter.split(X, strata))
    else:
        cv_splitter = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        splits = list(cv_splitter.split(X))

    return CrossFitSplits(
        n_folds=n_folds,
        n_samples=n_samples,
        train_indices=[train_idx for train_idx, _ in splits],
        val_indices=[val_idx for _, val_idx in splits],
        stratified=stratify_by is not None,
    )
