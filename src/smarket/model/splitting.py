"""Deterministic stratified train/test split and repeated k-fold assignment.

Timeline of resampling for one run::

    engineered rows --(seed 123)--> [======TRAIN 70%======][==TEST 30%==]
    TRAIN --(seed 456)--> Repeat1: Fold1..Fold5, ..., Repeat5: Fold1..Fold5

The test partition is never touched until the final evaluation. Fold indices
are positional into the training frame.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.model_selection import RepeatedStratifiedKFold, train_test_split


@dataclass(frozen=True)
class Fold:
    """One resample: rows used to fit (analysis) and to score (assessment).

    Attributes
    ----------
    repeat : int
        1-based repetition number.
    fold : int
        1-based fold number within the repetition.
    train_idx : np.ndarray
        Positional indices of the analysis rows.
    test_idx : np.ndarray
        Positional indices of the assessment rows.
    """

    repeat: int
    fold: int
    train_idx: np.ndarray
    test_idx: np.ndarray

    @property
    def fold_id(self) -> str:
        return f"Repeat{self.repeat}.Fold{self.fold}"


@dataclass(frozen=True)
class FoldAssignment:
    """All folds of a repeated k-fold assignment over ``n_rows`` training rows."""

    folds: tuple[Fold, ...]
    n_rows: int
    n_folds: int
    n_repeats: int

    def __post_init__(self) -> None:
        for repeat in range(1, self.n_repeats + 1):
            rows = np.concatenate(
                [f.test_idx for f in self.folds if f.repeat == repeat] or [np.array([], dtype=int)]
            )
            if len(rows) != self.n_rows or not np.array_equal(np.sort(rows), np.arange(self.n_rows)):
                raise ValueError(
                    f"Repeat {repeat} does not partition the {self.n_rows} training rows"
                )

    def __len__(self) -> int:
        return len(self.folds)

    def __iter__(self):
        return iter(self.folds)

    @property
    def fold_ids(self) -> list[str]:
        return [f.fold_id for f in self.folds]

    def membership(self) -> pd.DataFrame:
        """Long table of ``(row, repeat, fold)`` assessment membership."""
        records = [
            {"row": int(row), "repeat": f.repeat, "fold": f.fold}
            for f in self.folds
            for row in f.test_idx
        ]
        return pd.DataFrame.from_records(records, columns=["row", "repeat", "fold"])


def split_train_test(
    frame: pd.DataFrame,
    train_fraction: float = 0.7,
    strata: str = "direction",
    seed: int = 123,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Stratified sampling without replacement into train and test partitions.

    Parameters
    ----------
    frame : pd.DataFrame
        Engineered observations (one row per trading day).
    train_fraction : float
        Share of rows in the training partition.
    strata : str
        Column whose class proportions are preserved in both partitions.
    seed : int
        Random seed; identical seeds give identical membership.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame]
        ``(train, test)`` with 0-based indexes. Each keeps the rows in their
        original chronological order.
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    positions = np.arange(len(frame))
    train_pos, test_pos = train_test_split(
        positions,
        train_size=train_fraction,
        stratify=frame[strata].to_numpy(),
        random_state=seed,
    )
    train = frame.iloc[np.sort(train_pos)].reset_index(drop=True)
    test = frame.iloc[np.sort(test_pos)].reset_index(drop=True)
    return train, test


def repeated_folds(
    train: pd.DataFrame,
    n_folds: int = 5,
    n_repeats: int = 5,
    strata: str = "direction",
    seed: int = 456,
) -> FoldAssignment:
    """Repeated stratified k-fold assignment over the training partition.

    Each repetition is an independent stratified partition of the training
    rows into ``n_folds`` disjoint assessment sets whose sizes differ by at
    most one.
    """
    splitter = RepeatedStratifiedKFold(
        n_splits=n_folds, n_repeats=n_repeats, random_state=seed
    )
    y = train[strata].to_numpy()
    folds = []
    for k, (train_idx, test_idx) in enumerate(splitter.split(np.zeros(len(y)), y)):
        repeat, fold = divmod(k, n_folds)
        folds.append(
            Fold(
                repeat=repeat + 1,
                fold=fold + 1,
                train_idx=np.asarray(train_idx),
                test_idx=np.asarray(test_idx),
            )
        )
    return FoldAssignment(
        folds=tuple(folds), n_rows=len(y), n_folds=n_folds, n_repeats=n_repeats
    )
