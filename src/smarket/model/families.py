"""Model families: the capability interface and its four implementations.

A ``ModelFamily`` bundles the grid, the learner factory, the scaling flag
and validation for one family. The grid runner and orchestrator are written
once against this interface.

Families:
    boost_tree  : LightGBM gradient-boosted trees, tuned on tree count
    rand_forest : random forest, tuned on (mtry, tree count)
    svm_rbf     : RBF-kernel SVM, tuned on kernel bandwidth
    mlp         : single-hidden-layer perceptron (50 epochs), tuned on units
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import lightgbm as lgb
import numpy as np
from scipy.stats import qmc
from sklearn.calibration import CalibratedClassifierCV
from sklearn.ensemble import RandomForestClassifier
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline
from sklearn.svm import SVC

from smarket.config.settings import FAMILY_GRIDS, MLP_EPOCHS, FamilyGridConfig
from smarket.errors import ConfigurationError
from smarket.model.preprocessing import build_preprocessor


@dataclass(frozen=True)
class HyperparameterConfig:
    """One point of a hyperparameter grid.

    Attributes
    ----------
    config_id : str
        ``Model01``-style identifier in enumeration order.
    params : Mapping[str, float | int]
        Tuned parameter values keyed by family-level name.
    """

    config_id: str
    params: Mapping[str, float | int] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return dict(self.params)


def make_grid(points: list[dict]) -> list[HyperparameterConfig]:
    """Number distinct points as ``Model01``, ``Model02``, ... in order."""
    seen: list[dict] = []
    for point in points:
        if point not in seen:
            seen.append(point)
    width = max(2, len(str(len(seen))))
    return [
        HyperparameterConfig(config_id=f"Model{i + 1:0{width}d}", params=p)
        for i, p in enumerate(seen)
    ]


@dataclass(frozen=True)
class ModelFamily:
    """Capability interface for one model family.

    Attributes
    ----------
    name : str
        Store key and CLI name (e.g. ``"boost_tree"``).
    label : str
        Human-readable name for reports.
    scale : bool
        Whether predictors are standardized and power-transformed.
    grid_config : FamilyGridConfig
        Search-space bounds.
    estimator_factory : Callable[[dict, int], object]
        Builds an unfitted learner from ``(params, random_state)``.
    grid_factory : Callable[[FamilyGridConfig, int, int], list[dict]]
        Enumerates raw grid points from ``(grid_config, n_predictors, seed)``.
    """

    name: str
    label: str
    scale: bool
    grid_config: FamilyGridConfig
    estimator_factory: Callable[[dict, int], object]
    grid_factory: Callable[[FamilyGridConfig, int, int], list[dict]]

    def grid(self, n_predictors: int, seed: int = 42) -> list[HyperparameterConfig]:
        """Enumerate this family's hyperparameter grid."""
        return make_grid(self.grid_factory(self.grid_config, n_predictors, seed))

    def build_estimator(self, params: Mapping, random_state: int = 42):
        return self.estimator_factory(dict(params), random_state)

    def validate(self, params: Mapping, n_predictors: int) -> None:
        """Raise ``ConfigurationError`` if ``params`` cannot be trained.

        Parameters
        ----------
        params : Mapping
            One configuration's parameter values.
        n_predictors : int
            Predictor columns available after preprocessing.
        """
        mtry = params.get("mtry")
        if mtry is not None and not 1 <= int(mtry) <= n_predictors:
            raise ConfigurationError(
                f"{self.name}: mtry={mtry} outside [1, {n_predictors}] predictors"
            )
        for key, value in params.items():
            if not np.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{self.name}: {key}={value} must be positive")


def build_workflow(
    family: ModelFamily,
    params: Mapping,
    correlation_threshold: float = 0.9,
    random_state: int = 42,
) -> Pipeline:
    """Unfitted preprocessing + learner pipeline for one configuration."""
    return Pipeline(
        [
            (
                "preprocess",
                build_preprocessor(
                    scale=family.scale,
                    correlation_threshold=correlation_threshold,
                    random_state=random_state,
                ),
            ),
            ("model", family.build_estimator(params, random_state)),
        ]
    )


# ---------------------------------------------------------------------------
# Grid generators
# ---------------------------------------------------------------------------


def _regular_grid(grid_config: FamilyGridConfig, n_predictors: int, seed: int) -> list[dict]:
    """Evenly spaced levels of a single parameter (log-spaced where configured)."""
    (name, (low, high)), = grid_config.bounds.items()
    if name in grid_config.log_scale:
        values = np.logspace(np.log10(low), np.log10(high), grid_config.size)
        return [{name: float(v)} for v in values]
    values = np.linspace(low, high, grid_config.size)
    return [{name: int(round(v))} for v in values]


def _space_filling_grid(
    grid_config: FamilyGridConfig, n_predictors: int, seed: int
) -> list[dict]:
    """Latin hypercube over integer parameters; an upper bound of 0 means n_predictors."""
    names = list(grid_config.bounds)
    lows = np.array([grid_config.bounds[n][0] for n in names], dtype=float)
    highs = np.array(
        [grid_config.bounds[n][1] or n_predictors for n in names], dtype=float
    )
    sampler = qmc.LatinHypercube(d=len(names), seed=seed)
    unit = sampler.random(n=grid_config.size)
    scaled = lows + unit * (highs - lows)
    return [
        {name: int(round(value)) for name, value in zip(names, row)}
        for row in scaled
    ]


# ---------------------------------------------------------------------------
# Learner factories
# ---------------------------------------------------------------------------


def _boost_tree(params: dict, random_state: int):
    return lgb.LGBMClassifier(
        n_estimators=int(params["trees"]),
        random_state=random_state,
        deterministic=True,
        force_row_wise=True,
        verbose=-1,
    )


def _rand_forest(params: dict, random_state: int):
    return RandomForestClassifier(
        n_estimators=int(params["trees"]),
        max_features=int(params["mtry"]),
        random_state=random_state,
    )


def _svm_rbf(params: dict, random_state: int):
    # Platt scaling over 5 internal folds supplies P(Up)
    return CalibratedClassifierCV(
        estimator=SVC(kernel="rbf", gamma=float(params["rbf_sigma"])),
        method="sigmoid",
        cv=5,
    )


def _mlp(params: dict, random_state: int):
    return MLPClassifier(
        hidden_layer_sizes=(int(params["hidden_units"]),),
        max_iter=MLP_EPOCHS,
        random_state=random_state,
    )


FAMILIES: dict[str, ModelFamily] = {
    "boost_tree": ModelFamily(
        name="boost_tree",
        label="Boosted Trees",
        scale=False,
        grid_config=FAMILY_GRIDS["boost_tree"],
        estimator_factory=_boost_tree,
        grid_factory=_regular_grid,
    ),
    "rand_forest": ModelFamily(
        name="rand_forest",
        label="Random Forest",
        scale=False,
        grid_config=FAMILY_GRIDS["rand_forest"],
        estimator_factory=_rand_forest,
        grid_factory=_space_filling_grid,
    ),
    "svm_rbf": ModelFamily(
        name="svm_rbf",
        label="SVM (RBF kernel)",
        scale=True,
        grid_config=FAMILY_GRIDS["svm_rbf"],
        estimator_factory=_svm_rbf,
        grid_factory=_regular_grid,
    ),
    "mlp": ModelFamily(
        name="mlp",
        label="Neural Network",
        scale=True,
        grid_config=FAMILY_GRIDS["mlp"],
        estimator_factory=_mlp,
        grid_factory=_regular_grid,
    ),
}


def get_family(name: str) -> ModelFamily:
    """Look up a family by name, raising ``ConfigurationError`` for unknown names."""
    try:
        return FAMILIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown model family {name!r}; expected one of {sorted(FAMILIES)}"
        ) from None
