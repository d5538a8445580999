"""Classification metrics for fold scoring and the final test evaluation.

The fixed metric set is {roc_auc, precision, recall, accuracy, f_meas, kap}
with "Up" as the positive class. A metric that is undefined for a fold
(a single-class assessment set for roc_auc, no predicted "Up" for
precision) is reported as NaN so that aggregation can exclude it rather
than treat it as zero.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)

from smarket.config.settings import METRICS, NEGATIVE_CLASS, POSITIVE_CLASS

# Order of the flattened confusion counts: (predicted, actual)
CONFUSION_CELLS = ("up_up", "up_down", "down_up", "down_down")


@dataclass
class TestMetrics:
    """Held-out evaluation of the finalized winning model.

    Attributes
    ----------
    family : str
        Winning model family name.
    config_id : str
        Identifier of the winning configuration.
    params : dict
        Hyperparameter values of the winning configuration.
    metrics : dict[str, float]
        Metric name -> value on the test partition.
    n_rows : int
        Size of the test partition.
    """

    family: str
    config_id: str
    params: dict
    metrics: dict[str, float] = field(default_factory=dict)
    n_rows: int = 0

    def as_row(self) -> dict:
        return {
            "family": self.family,
            "config_id": self.config_id,
            **{f"param_{k}": v for k, v in self.params.items()},
            **self.metrics,
        }


def score_predictions(
    actual: np.ndarray,
    predicted: np.ndarray,
    prob_up: np.ndarray,
    metrics: tuple[str, ...] = METRICS,
) -> dict[str, float]:
    """Score one set of predictions on every requested metric.

    Parameters
    ----------
    actual : np.ndarray
        True labels ("Up"/"Down").
    predicted : np.ndarray
        Predicted labels ("Up"/"Down").
    prob_up : np.ndarray
        Predicted probability of "Up".
    metrics : tuple[str, ...]
        Metric names to compute, in output order.

    Returns
    -------
    dict[str, float]
        Metric name -> score (NaN when undefined).
    """
    actual = np.asarray(actual)
    predicted = np.asarray(predicted)
    prob_up = np.asarray(prob_up, dtype=float)
    labels = [POSITIVE_CLASS, NEGATIVE_CLASS]

    scores: dict[str, float] = {}
    for name in metrics:
        if name not in _METRIC_FUNCS:
            raise ValueError(f"Unknown metric: {name}")
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            scores[name] = float(_METRIC_FUNCS[name](actual, predicted, prob_up, labels))
    return scores


def confusion_counts(actual: np.ndarray, predicted: np.ndarray) -> dict[str, int]:
    """Counts of (predicted, actual) label pairs keyed by ``CONFUSION_CELLS``."""
    actual = np.asarray(actual)
    predicted = np.asarray(predicted)
    pred_up = predicted == POSITIVE_CLASS
    act_up = actual == POSITIVE_CLASS
    return {
        "up_up": int(np.sum(pred_up & act_up)),
        "up_down": int(np.sum(pred_up & ~act_up)),
        "down_up": int(np.sum(~pred_up & act_up)),
        "down_down": int(np.sum(~pred_up & ~act_up)),
    }


def _roc_auc(actual, predicted, prob_up, labels) -> float:
    positive = actual == POSITIVE_CLASS
    if positive.all() or not positive.any():
        return np.nan
    return roc_auc_score(positive.astype(int), prob_up)


def _precision(actual, predicted, prob_up, labels) -> float:
    return precision_score(
        actual, predicted, pos_label=POSITIVE_CLASS, labels=labels, zero_division=np.nan
    )


def _recall(actual, predicted, prob_up, labels) -> float:
    return recall_score(
        actual, predicted, pos_label=POSITIVE_CLASS, labels=labels, zero_division=np.nan
    )


def _accuracy(actual, predicted, prob_up, labels) -> float:
    return accuracy_score(actual, predicted)


def _f_meas(actual, predicted, prob_up, labels) -> float:
    return f1_score(
        actual, predicted, pos_label=POSITIVE_CLASS, labels=labels, zero_division=np.nan
    )


def _kap(actual, predicted, prob_up, labels) -> float:
    return cohen_kappa_score(actual, predicted, labels=labels)


_METRIC_FUNCS = {
    "roc_auc": _roc_auc,
    "precision": _precision,
    "recall": _recall,
    "accuracy": _accuracy,
    "f_meas": _f_meas,
    "kap": _kap,
}
