"""Grid runner: fit every configuration on every resample and score it.

The work is one cell per (configuration, fold). Cells are independent, so
they are dispatched through a joblib worker pool; ``n_jobs=1`` runs them
sequentially in-process and yields identical results. Output slots are
reserved in cell order before dispatch, so aggregation never depends on the
order in which workers finish.

Failure policy:
    - a configuration that fails validation is recorded once and all of its
      cells are missing (NaN); the rest of the grid still runs
    - a cell whose fit or prediction raises is recorded as missing with its
      error message; it never aborts the grid
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import structlog
from joblib import Parallel, delayed
from sklearn.base import clone

from smarket.config.settings import METRICS, POSITIVE_CLASS
from smarket.errors import ConfigurationError
from smarket.model.evaluation import confusion_counts, score_predictions
from smarket.model.families import HyperparameterConfig, ModelFamily, build_workflow
from smarket.model.features import predictor_matrix
from smarket.model.splitting import Fold, FoldAssignment

logger = structlog.get_logger()


@dataclass(frozen=True)
class FoldResult:
    """One scalar score: (config, fold, metric) -> value (NaN when missing)."""

    config_id: str
    fold_id: str
    metric: str
    value: float


@dataclass
class CellOutcome:
    """Everything produced by one (config, fold) cell."""

    config_id: str
    fold_id: str
    scores: dict[str, float]
    confusion: dict[str, int] | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class GridResult:
    """All cell outcomes for one family's grid.

    Attributes
    ----------
    family : str
        Family name.
    grid : list[HyperparameterConfig]
        Configurations in enumeration order.
    fold_ids : list[str]
        Fold identifiers in assignment order.
    outcomes : list[CellOutcome]
        One per (config, fold), config-major.
    config_errors : dict[str, str]
        Configurations rejected before fitting, with the reason.
    metrics : tuple[str, ...]
        Metric set that was scored.
    """

    family: str
    grid: list[HyperparameterConfig]
    fold_ids: list[str]
    outcomes: list[CellOutcome]
    config_errors: dict[str, str] = field(default_factory=dict)
    metrics: tuple[str, ...] = METRICS

    @property
    def fold_results(self) -> list[FoldResult]:
        return [
            FoldResult(o.config_id, o.fold_id, metric, o.scores.get(metric, np.nan))
            for o in self.outcomes
            for metric in self.metrics
        ]

    @property
    def failures(self) -> list[tuple[str, str, str]]:
        """``(config_id, fold_id, message)`` for every failed cell."""
        return [(o.config_id, o.fold_id, o.error) for o in self.outcomes if o.failed]

    def to_frame(self) -> pd.DataFrame:
        """Long table ``config_id, <params>, fold_id, metric, value``."""
        params = {c.config_id: c.as_dict() for c in self.grid}
        records = [
            {
                "config_id": r.config_id,
                **params[r.config_id],
                "fold_id": r.fold_id,
                "metric": r.metric,
                "value": r.value,
            }
            for r in self.fold_results
        ]
        return pd.DataFrame.from_records(records)

    def config(self, config_id: str) -> HyperparameterConfig:
        for c in self.grid:
            if c.config_id == config_id:
                return c
        raise KeyError(config_id)


class ModelGridRunner:
    """Train and score a hyperparameter grid against shared folds.

    Parameters
    ----------
    family : ModelFamily
        The family whose learner and preprocessing are used.
    metrics : tuple[str, ...]
        Metric names scored per cell.
    n_jobs : int
        joblib worker count (1 = sequential, -1 = all cores).
    correlation_threshold : float
        Passed to the family's correlation filter.
    random_state : int
        Seed for learners and the auxiliary imputer.
    """

    def __init__(
        self,
        family: ModelFamily,
        metrics: tuple[str, ...] = METRICS,
        n_jobs: int = 1,
        correlation_threshold: float = 0.9,
        random_state: int = 42,
    ) -> None:
        self.family = family
        self.metrics = tuple(metrics)
        self.n_jobs = n_jobs
        self.correlation_threshold = correlation_threshold
        self.random_state = random_state

    def run(
        self,
        train: pd.DataFrame,
        folds: FoldAssignment,
        grid: list[HyperparameterConfig],
        n_predictors: int,
        strata: str = "direction",
    ) -> GridResult:
        """Execute every (config, fold) cell.

        Parameters
        ----------
        train : pd.DataFrame
            Training partition (engineered features + outcome).
        folds : FoldAssignment
            Repeated k-fold assignment over ``train``.
        grid : list[HyperparameterConfig]
            Configurations in enumeration order.
        n_predictors : int
            Predictor columns left after preprocessing, for validation.
        strata : str
            Outcome column.

        Returns
        -------
        GridResult
        """
        log = logger.bind(family=self.family.name)
        X = predictor_matrix(train).to_numpy()
        y = train[strata].to_numpy()

        config_errors: dict[str, str] = {}
        runnable: list[HyperparameterConfig] = []
        for config in grid:
            try:
                self.family.validate(config.params, n_predictors)
            except ConfigurationError as exc:
                config_errors[config.config_id] = str(exc)
                log.warning("grid_config_rejected", config_id=config.config_id, error=str(exc))
            else:
                runnable.append(config)

        log.info(
            "grid_run_start",
            configs=len(grid),
            rejected=len(config_errors),
            folds=len(folds),
            n_jobs=self.n_jobs,
        )

        computed = Parallel(n_jobs=self.n_jobs)(
            delayed(_run_cell)(
                self._workflow(config), config.config_id, fold, X, y, self.metrics
            )
            for config in runnable
            for fold in folds
        )
        by_cell = {(o.config_id, o.fold_id): o for o in computed}

        outcomes: list[CellOutcome] = []
        for config in grid:
            for fold in folds:
                key = (config.config_id, fold.fold_id)
                if key in by_cell:
                    outcomes.append(by_cell[key])
                else:
                    outcomes.append(
                        CellOutcome(
                            config_id=config.config_id,
                            fold_id=fold.fold_id,
                            scores={m: np.nan for m in self.metrics},
                            error=config_errors[config.config_id],
                        )
                    )

        result = GridResult(
            family=self.family.name,
            grid=list(grid),
            fold_ids=folds.fold_ids,
            outcomes=outcomes,
            config_errors=config_errors,
            metrics=self.metrics,
        )
        for config_id, fold_id, message in result.failures:
            if config_id not in config_errors:
                log.warning("grid_cell_failed", config_id=config_id, fold_id=fold_id, error=message)
        log.info("grid_run_complete", cells=len(outcomes), failed=len(result.failures))
        return result

    def _workflow(self, config: HyperparameterConfig):
        return build_workflow(
            self.family,
            config.params,
            correlation_threshold=self.correlation_threshold,
            random_state=self.random_state,
        )


def fit_workflow(workflow, X_fit, y_fit):
    """Fit ``workflow`` in place and return it."""
    with warnings.catch_warnings():
        # Short fixed-epoch training does not converge; that is the configured behaviour.
        warnings.simplefilter("ignore")
        workflow.fit(X_fit, y_fit)
    return workflow


def fit_and_predict(workflow, X_fit, y_fit, X_new) -> tuple[np.ndarray, np.ndarray]:
    """Fit ``workflow`` and return ``(predicted_labels, prob_up)`` for ``X_new``."""
    fit_workflow(workflow, X_fit, y_fit)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        proba = workflow.predict_proba(X_new)
    classes = list(workflow.classes_)
    if POSITIVE_CLASS not in classes:
        raise ValueError(f"Training rows contain no {POSITIVE_CLASS!r} label")
    prob_up = proba[:, classes.index(POSITIVE_CLASS)]
    predicted = np.asarray(classes, dtype=object)[np.argmax(proba, axis=1)]
    return predicted, prob_up


def _run_cell(workflow, config_id: str, fold: Fold, X, y, metrics) -> CellOutcome:
    """Fit on the fold's analysis rows and score its assessment rows."""
    try:
        predicted, prob_up = fit_and_predict(
            clone(workflow), X[fold.train_idx], y[fold.train_idx], X[fold.test_idx]
        )
    except Exception as exc:
        return CellOutcome(
            config_id=config_id,
            fold_id=fold.fold_id,
            scores={m: np.nan for m in metrics},
            error=f"{type(exc).__name__}: {exc}",
        )

    actual = y[fold.test_idx]
    return CellOutcome(
        config_id=config_id,
        fold_id=fold.fold_id,
        scores=score_predictions(actual, predicted, prob_up, metrics),
        confusion=confusion_counts(actual, predicted),
    )

