"""Derived per-row features for the daily index series.

Features (all computed in chronological row order, never looking ahead):
    1. cc_return: continuously-compounded return, ln(1 + lag_1 / 100)
    2. cc_avg: running mean of cc_return over rows 0..i inclusive
    3. cc_over_avg: cc_return > cc_avg (strict; equality counts as under)
    4. cc_avg_diff: cc_return - cc_avg
    5. days_over_avg: signed streak counter over cc_over_avg

The first row has no days_over_avg (there is no previous row to bootstrap
from) and is dropped by ``model_frame`` before any split.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pandas as pd

from smarket.config.settings import PREDICTORS

FEATURE_NAMES = [
    "cc_return",
    "cc_avg",
    "cc_over_avg",
    "cc_avg_diff",
    "days_over_avg",
]


def streak_counter(flags: Sequence[bool]) -> tuple[int | None, ...]:
    """Signed run length of consecutive equal flags, ending at each row.

    Element 0 is ``None``. Element 1 is seeded from ``flags[0]`` (the
    previous row), after which each row compares its own flag to the
    previous one: a continued run grows by one in its direction, a change
    restarts at +1 or -1.

    Parameters
    ----------
    flags : Sequence[bool]
        Over/under-average flags in chronological order.

    Returns
    -------
    tuple[int | None, ...]
        Same length as ``flags``.

    Examples
    --------
    >>> streak_counter([True, True, True, False, False, False, True])
    (None, 1, 2, -1, -2, -3, 1)
    """
    flags = [bool(f) for f in flags]
    if not flags:
        return ()
    if len(flags) == 1:
        return (None,)

    counts: list[int] = [1 if flags[0] else -1]
    for prev_flag, flag in zip(flags[1:-1], flags[2:]):
        prev = counts[-1]
        if flag and prev_flag:
            counts.append(prev + 1)
        elif flag:
            counts.append(1)
        elif prev_flag:
            counts.append(-1)
        else:
            counts.append(prev - 1)
    return (None, *counts)


def engineer_features(frame: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of ``frame`` with the derived feature columns appended.

    Parameters
    ----------
    frame : pd.DataFrame
        Observations in chronological order with at least a ``lag_1`` column.

    Returns
    -------
    pd.DataFrame
        New frame; the input is not modified.
    """
    out = frame.copy()
    cc_return = np.log1p(out["lag_1"].astype(float) / 100.0)
    cc_avg = cc_return.expanding(min_periods=1).mean()
    over = (cc_return > cc_avg).to_numpy()

    out["cc_return"] = cc_return
    out["cc_avg"] = cc_avg
    out["cc_over_avg"] = over
    out["cc_avg_diff"] = cc_return - cc_avg
    out["days_over_avg"] = pd.array(streak_counter(over), dtype="Int64")
    return out


def model_frame(engineered: pd.DataFrame) -> pd.DataFrame:
    """Drop rows lacking ``days_over_avg`` and return a fresh 0-based frame."""
    kept = engineered[engineered["days_over_avg"].notna()]
    return kept.reset_index(drop=True)


def predictor_matrix(frame: pd.DataFrame) -> pd.DataFrame:
    """Select the predictor columns as a float frame (NaN for missing)."""
    X = frame[list(PREDICTORS)].copy()
    X["cc_over_avg"] = X["cc_over_avg"].astype(float)
    X["days_over_avg"] = X["days_over_avg"].astype("Float64").to_numpy(dtype=float, na_value=np.nan)
    return X.astype(float)
