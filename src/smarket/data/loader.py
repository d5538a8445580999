"""Raw dataset loading, validation, and outcome recovery.

The raw table has one row per trading day with columns
``Year, Lag1..Lag5, Volume, Today, Direction``. ``Today`` is the same-day
return and leaks the label, so it is dropped on load. Columns are renamed to
snake_case (``Lag1`` -> ``lag_1``) and an ordinal ``index`` column (1-based,
chronological) is added.

Missing ``Direction`` labels are recovered with an auxiliary bagged-tree
classifier trained on the labelled rows. Missing predictor values are left
as NaN for the per-family imputation step.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import structlog
from sklearn.ensemble import BaggingClassifier

from smarket.config.settings import NEGATIVE_CLASS, POSITIVE_CLASS
from smarket.errors import DataError

logger = structlog.get_logger()

RAW_COLUMNS = ["Year", "Lag1", "Lag2", "Lag3", "Lag4", "Lag5", "Volume", "Direction"]
LEAKY_COLUMNS = ["Today"]

_RENAME = {
    "Year": "year",
    "Lag1": "lag_1",
    "Lag2": "lag_2",
    "Lag3": "lag_3",
    "Lag4": "lag_4",
    "Lag5": "lag_5",
    "Volume": "volume",
    "Direction": "direction",
}

_LABEL_PREDICTORS = ["lag_1", "lag_2", "lag_3", "lag_4", "lag_5", "volume"]


@dataclass
class LoadReport:
    """Summary of what the loader changed."""

    n_rows: int
    n_missing_direction: int
    n_missing_predictors: int
    dropped_columns: list[str]


def read_csv(path: str | Path) -> pd.DataFrame:
    """Read the raw CSV file. A leading unnamed row-name column is discarded."""
    path = Path(path)
    if not path.exists():
        raise DataError(f"Dataset not found: {path}")
    frame = pd.read_csv(path)
    unnamed = [c for c in frame.columns if str(c).startswith("Unnamed") or c == ""]
    if unnamed:
        frame = frame.drop(columns=unnamed)
    return frame


def prepare_observations(
    raw: pd.DataFrame, random_state: int = 42
) -> tuple[pd.DataFrame, LoadReport]:
    """Validate and normalize a raw frame into the observation schema.

    Parameters
    ----------
    raw : pd.DataFrame
        Raw rows in chronological order with the ``RAW_COLUMNS``.
    random_state : int
        Seed for the auxiliary label-imputation model.

    Returns
    -------
    tuple[pd.DataFrame, LoadReport]
        Observations with snake_case columns plus an ordinal ``index`` and a
        report of the recoveries that were applied.

    Raises
    ------
    DataError
        If required columns are missing, a label is neither ``Up`` nor
        ``Down``, or no row carries a label.
    """
    missing = [c for c in RAW_COLUMNS if c not in raw.columns]
    if missing:
        raise DataError(f"Missing required columns: {missing}")

    dropped = [c for c in LEAKY_COLUMNS if c in raw.columns]
    frame = raw.drop(columns=dropped)[RAW_COLUMNS].rename(columns=_RENAME)
    frame = frame.reset_index(drop=True)
    frame.insert(0, "index", np.arange(1, len(frame) + 1))

    labels = frame["direction"].dropna().unique()
    unknown = sorted(set(labels) - {POSITIVE_CLASS, NEGATIVE_CLASS})
    if unknown:
        raise DataError(f"Unknown direction labels: {unknown}")

    n_missing_direction = int(frame["direction"].isna().sum())
    n_missing_predictors = int(frame[_LABEL_PREDICTORS].isna().any(axis=1).sum())

    if n_missing_direction:
        frame["direction"] = impute_direction(frame, random_state=random_state)

    report = LoadReport(
        n_rows=len(frame),
        n_missing_direction=n_missing_direction,
        n_missing_predictors=n_missing_predictors,
        dropped_columns=dropped,
    )
    logger.info(
        "observations_loaded",
        rows=report.n_rows,
        imputed_direction=n_missing_direction,
        rows_missing_predictors=n_missing_predictors,
        dropped=dropped,
    )
    return frame, report


def impute_direction(frame: pd.DataFrame, random_state: int = 42) -> pd.Series:
    """Fill missing ``direction`` labels with a bagged-tree classifier.

    The classifier is fit on the labelled rows using the lagged returns and
    volume (median-filled for this auxiliary model only). Labelled rows are
    returned unchanged.
    """
    direction = frame["direction"].copy()
    known = direction.notna()
    if known.all():
        return direction
    if not known.any():
        raise DataError("No labelled rows: cannot recover missing direction")

    X = frame[_LABEL_PREDICTORS].astype(float)
    X = X.fillna(X.median())

    model = BaggingClassifier(n_estimators=25, random_state=random_state)
    model.fit(X[known].to_numpy(), direction[known].to_numpy())
    direction[~known] = model.predict(X[~known].to_numpy())
    return direction


def load_observations(
    path: str | Path, random_state: int = 42
) -> tuple[pd.DataFrame, LoadReport]:
    """Read and prepare the dataset stored at ``path``."""
    return prepare_observations(read_csv(path), random_state=random_state)
