"""Model package: feature engineering, resampling, grid tuning, and selection.

Public API:
  - engineer_features / streak_counter: derived per-row features
  - split_train_test / repeated_folds: deterministic stratified resampling
  - FAMILIES / ModelFamily: the four tunable model families
  - ModelGridRunner / GridResult: (config x fold) training and scoring
  - aggregate / select_best / top_n / resampled_confusion: model selection

The orchestrator lives in ``smarket.model.pipeline`` and is imported
directly, since it depends on the result store.
"""

from smarket.model.families import FAMILIES, HyperparameterConfig, ModelFamily
from smarket.model.features import engineer_features, streak_counter
from smarket.model.grid import FoldResult, GridResult, ModelGridRunner
from smarket.model.selection import (
    BestConfig,
    aggregate,
    resampled_confusion,
    select_best,
    top_n,
)
from smarket.model.splitting import FoldAssignment, repeated_folds, split_train_test

__all__ = [
    "FAMILIES",
    "HyperparameterConfig",
    "ModelFamily",
    "engineer_features",
    "streak_counter",
    "FoldResult",
    "GridResult",
    "ModelGridRunner",
    "BestConfig",
    "aggregate",
    "resampled_confusion",
    "select_best",
    "top_n",
    "FoldAssignment",
    "repeated_folds",
    "split_train_test",
]
