"""Reduce per-fold scores to a single chosen configuration per family.

aggregate : per (config, metric) mean, standard error and non-missing count
rank      : configurations ordered by mean of the selection metric
select_best / top_n : the winner and the reporting subtable
resampled_confusion : mean per-fold confusion counts of one configuration

Missing cells (failed fits, undefined metrics) are excluded from both the
numerator and the denominator. Every reduction here is independent of the
order in which fold results were produced.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from smarket.config.settings import NEGATIVE_CLASS, POSITIVE_CLASS
from smarket.errors import SelectionError
from smarket.model.grid import GridResult


@dataclass(frozen=True)
class BestConfig:
    """The top-ranked configuration of one family."""

    config_id: str
    params: dict
    metric: str
    mean: float
    std_err: float
    n: int


def summarize_scores(values) -> tuple[float, float, int]:
    """Return ``(mean, std_err, n)`` over the finite entries of ``values``.

    ``std_err`` is the sample standard deviation (ddof=1) divided by
    sqrt(n); it is NaN when fewer than two scores are available.
    """
    arr = np.asarray(values, dtype=float)
    arr = arr[np.isfinite(arr)]
    n = int(arr.size)
    if n == 0:
        return np.nan, np.nan, 0
    mean = float(arr.sum() / n)
    if n < 2:
        return mean, np.nan, n
    return mean, float(np.std(arr, ddof=1) / np.sqrt(n)), n


def aggregate(grid_result: GridResult) -> pd.DataFrame:
    """Per-configuration metric summary.

    Returns
    -------
    pd.DataFrame
        Columns ``config_id, <param columns>, metric, mean, std_err, n``;
        rows in grid enumeration order, metrics in metric-set order.
    """
    values: dict[tuple[str, str], list[float]] = {}
    for r in grid_result.fold_results:
        values.setdefault((r.config_id, r.metric), []).append(r.value)

    records = []
    for config in grid_result.grid:
        for metric in grid_result.metrics:
            mean, std_err, n = summarize_scores(values.get((config.config_id, metric), []))
            records.append(
                {
                    "config_id": config.config_id,
                    **config.as_dict(),
                    "metric": metric,
                    "mean": mean,
                    "std_err": std_err,
                    "n": n,
                }
            )
    return pd.DataFrame.from_records(records)


def rank(aggregated: pd.DataFrame, metric: str = "roc_auc") -> pd.DataFrame:
    """Rows for ``metric`` sorted by mean descending.

    The sort is stable, so equal means keep enumeration order. Configurations
    with no valid score sort last.
    """
    rows = aggregated[aggregated["metric"] == metric]
    if rows.empty:
        raise ValueError(f"No aggregated rows for metric {metric!r}")
    ranked = rows.sort_values("mean", ascending=False, kind="mergesort", na_position="last")
    ranked = ranked.reset_index(drop=True)
    ranked.insert(0, "rank", np.arange(1, len(ranked) + 1))
    return ranked


def select_best(
    aggregated: pd.DataFrame, grid_result: GridResult, metric: str = "roc_auc"
) -> BestConfig:
    """The configuration with the highest mean ``metric``.

    Raises
    ------
    SelectionError
        If no configuration has a finite mean.
    """
    top = rank(aggregated, metric).iloc[0]
    if not np.isfinite(top["mean"]):
        raise SelectionError(f"{grid_result.family}: no configuration produced a valid {metric}")
    config = grid_result.config(top["config_id"])
    return BestConfig(
        config_id=config.config_id,
        params=config.as_dict(),
        metric=metric,
        mean=float(top["mean"]),
        std_err=float(top["std_err"]),
        n=int(top["n"]),
    )


def top_n(aggregated: pd.DataFrame, metric: str = "roc_auc", n: int = 5) -> pd.DataFrame:
    return rank(aggregated, metric).head(n).reset_index(drop=True)


def resampled_confusion(grid_result: GridResult, config_id: str) -> pd.DataFrame:
    """Representative 2x2 confusion matrix of one configuration across folds.

    Counts from each successful fold are averaged cell by cell and rounded
    to the nearest integer.

    Returns
    -------
    pd.DataFrame
        Index ``Prediction`` (Up, Down), columns ``Truth`` (Up, Down).
    """
    counts = [
        o.confusion
        for o in grid_result.outcomes
        if o.config_id == config_id and o.confusion is not None
    ]
    labels = [POSITIVE_CLASS, NEGATIVE_CLASS]
    if counts:
        means = {cell: np.mean([c[cell] for c in counts]) for cell in counts[0]}
        matrix = np.rint(
            [
                [means["up_up"], means["up_down"]],
                [means["down_up"], means["down_down"]],
            ]
        ).astype(int)
    else:
        matrix = np.zeros((2, 2), dtype=int)
    return pd.DataFrame(
        matrix,
        index=pd.Index(labels, name="Prediction"),
        columns=pd.Index(labels, name="Truth"),
    )
