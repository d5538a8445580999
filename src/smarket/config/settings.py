"""Pipeline configuration: seeds, resampling layout, metrics, and grid bounds.

``PipelineConfig`` is immutable; use ``with_overrides`` to derive a variant
(the CLI does this for every option the operator passes). ``FAMILY_GRIDS``
holds the search-space bounds for each of the four model families.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

# Metric names in reporting order. "Up" is always the positive class.
METRICS: tuple[str, ...] = (
    "roc_auc",
    "precision",
    "recall",
    "accuracy",
    "f_meas",
    "kap",
)

POSITIVE_CLASS = "Up"
NEGATIVE_CLASS = "Down"

PREDICTORS: tuple[str, ...] = (
    "lag_1",
    "lag_2",
    "lag_3",
    "lag_4",
    "lag_5",
    "volume",
    "cc_return",
    "cc_avg",
    "cc_over_avg",
    "cc_avg_diff",
    "days_over_avg",
)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable configuration for one model-selection run.

    Attributes
    ----------
    train_fraction : float
        Share of rows placed in the training partition.
    split_seed : int
        Seed for the stratified train/test split.
    fold_seed : int
        Seed for the repeated stratified k-fold assignment.
    n_folds : int
        Folds per repetition.
    n_repeats : int
        Independent repetitions of the k-fold assignment.
    strata : str
        Column used for stratification and as the outcome.
    selection_metric : str
        Metric whose mean ranks configurations and families.
    top_n : int
        Size of the ranked subtable kept for reporting.
    n_jobs : int
        Worker count for the grid; 1 runs cells sequentially.
    correlation_threshold : float
        Absolute correlation above which one predictor of a pair is dropped.
    random_state : int
        Seed handed to every learner and auxiliary imputation model.
    store_path : Path
        Root directory of the per-family result store.
    """

    train_fraction: float = 0.7
    split_seed: int = 123
    fold_seed: int = 456
    n_folds: int = 5
    n_repeats: int = 5
    strata: str = "direction"
    selection_metric: str = "roc_auc"
    top_n: int = 5
    n_jobs: int = 1
    correlation_threshold: float = 0.9
    random_state: int = 42
    store_path: Path = field(default_factory=lambda: Path("results"))

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with the given fields replaced (``None`` values ignored)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "store_path" in changes:
            changes["store_path"] = Path(changes["store_path"])
        return replace(self, **changes)


DEFAULT_CONFIG = PipelineConfig()


@dataclass(frozen=True)
class FamilyGridConfig:
    """Search-space bounds for one model family.

    Attributes
    ----------
    size : int
        Number of configurations to enumerate.
    bounds : dict[str, tuple[float, float]]
        Inclusive lower/upper bound per tuned parameter.
    log_scale : tuple[str, ...]
        Parameters sampled evenly in log10 space.
    """

    size: int
    bounds: dict[str, tuple[float, float]]
    log_scale: tuple[str, ...] = ()


FAMILY_GRIDS: dict[str, FamilyGridConfig] = {
    "boost_tree": FamilyGridConfig(size=10, bounds={"trees": (5, 100)}),
    "rand_forest": FamilyGridConfig(
        size=20,
        # Upper mtry bound of 0 means "number of predictors after preprocessing".
        bounds={"mtry": (1, 0), "trees": (5, 100)},
    ),
    "svm_rbf": FamilyGridConfig(
        size=10,
        bounds={"rbf_sigma": (1e-10, 1.0)},
        log_scale=("rbf_sigma",),
    ),
    "mlp": FamilyGridConfig(size=10, bounds={"hidden_units": (1, 10)}),
}

# Fixed number of training epochs for the neural-network family.
MLP_EPOCHS = 50
