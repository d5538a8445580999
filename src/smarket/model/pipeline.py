"""Model-selection orchestrator.

Flow (strictly downward)::

    raw rows -> engineer_features -> model_frame -> split_train_test
             -> repeated_folds (train only)
             -> for each family: ModelGridRunner -> aggregate -> select_best
                                  -> ResultStore.save_family
             -> ranked family records -> max-by-key winner
             -> refit winner on full train -> score once on test

The comparison stage only needs what the store holds, so it can run in a
separate invocation via ``compare_stored``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import structlog
from sklearn.base import clone

from smarket.config.settings import DEFAULT_CONFIG, METRICS, PipelineConfig
from smarket.data.loader import prepare_observations
from smarket.data.store.result_store import ResultStore, StoredFamily
from smarket.errors import FitFailure
from smarket.model.evaluation import TestMetrics, score_predictions
from smarket.model.families import FAMILIES, ModelFamily, build_workflow
from smarket.model.features import engineer_features, model_frame, predictor_matrix
from smarket.model.grid import GridResult, ModelGridRunner, fit_and_predict, fit_workflow
from smarket.model.preprocessing import build_preprocessor, n_output_features
from smarket.model.selection import (
    BestConfig,
    aggregate,
    resampled_confusion,
    select_best,
    top_n,
)
from smarket.model.splitting import FoldAssignment, repeated_folds, split_train_test

logger = structlog.get_logger()


@dataclass
class Partitions:
    """Train/test partitions plus the fold assignment over train."""

    train: pd.DataFrame
    test: pd.DataFrame
    folds: FoldAssignment


@dataclass
class FamilyResult:
    """Everything one family's tuning produced.

    Attributes
    ----------
    family : str
        Family name.
    grid_result : GridResult | None
        Raw cell outcomes (None when reloaded from the store).
    metrics : pd.DataFrame
        Aggregated (config, metric) table.
    top_n : pd.DataFrame
        Ranked subtable by the selection metric.
    confusion : pd.DataFrame
        Resampled confusion matrix of the best configuration.
    best : BestConfig
        Selected configuration.
    workflow : sklearn Pipeline
        Best configuration's workflow, fitted on the whole training partition.
    failures : list
        Failed cells as ``(config_id, fold_id, message)``.
    """

    family: str
    grid_result: GridResult | None
    metrics: pd.DataFrame
    top_n: pd.DataFrame
    confusion: pd.DataFrame
    best: BestConfig
    workflow: object
    failures: list = field(default_factory=list)

    def best_metrics(self) -> dict[str, float]:
        """Mean of every metric for the best configuration."""
        rows = self.metrics[self.metrics["config_id"] == self.best.config_id]
        return dict(zip(rows["metric"], rows["mean"].astype(float)))

    @classmethod
    def from_stored(cls, stored: StoredFamily) -> "FamilyResult":
        return cls(
            family=stored.family,
            grid_result=None,
            metrics=stored.metrics,
            top_n=stored.top_n,
            confusion=stored.confusion,
            best=stored.best,
            workflow=stored.workflow,
            failures=[(f["config_id"], f["fold_id"], f["error"]) for f in stored.failures],
        )


@dataclass
class PipelineReport:
    """Final output of a full run."""

    families: list[FamilyResult]
    comparison: pd.DataFrame
    winner: FamilyResult
    test_metrics: TestMetrics
    final_model: object = None


# ---------------------------------------------------------------------------
# Data preparation
# ---------------------------------------------------------------------------


def prepare_partitions(
    observations: pd.DataFrame, config: PipelineConfig = DEFAULT_CONFIG
) -> Partitions:
    """Engineer features, drop the seed row, split, and assign folds."""
    frame = model_frame(engineer_features(observations))
    train, test = split_train_test(
        frame,
        train_fraction=config.train_fraction,
        strata=config.strata,
        seed=config.split_seed,
    )
    folds = repeated_folds(
        train,
        n_folds=config.n_folds,
        n_repeats=config.n_repeats,
        strata=config.strata,
        seed=config.fold_seed,
    )
    logger.info(
        "partitions_ready",
        rows=len(frame),
        train=len(train),
        test=len(test),
        folds=len(folds),
    )
    return Partitions(train=train, test=test, folds=folds)


# ---------------------------------------------------------------------------
# Per-family tuning
# ---------------------------------------------------------------------------


def tune_family(
    family: ModelFamily,
    partitions: Partitions,
    config: PipelineConfig = DEFAULT_CONFIG,
    store: ResultStore | None = None,
) -> FamilyResult:
    """Run one family's grid, fit its best configuration, and persist it.

    Parameters
    ----------
    family : ModelFamily
        Family to tune.
    partitions : Partitions
        Shared train/test split and folds.
    config : PipelineConfig
        Run configuration.
    store : ResultStore | None
        When given, results are written under ``family.name``.
    """
    log = logger.bind(family=family.name)
    X_train = predictor_matrix(partitions.train).to_numpy()
    n_predictors = n_output_features(
        build_preprocessor(
            scale=family.scale,
            correlation_threshold=config.correlation_threshold,
            random_state=config.random_state,
        ),
        X_train,
    )
    grid = family.grid(n_predictors, seed=config.random_state)

    runner = ModelGridRunner(
        family,
        metrics=METRICS,
        n_jobs=config.n_jobs,
        correlation_threshold=config.correlation_threshold,
        random_state=config.random_state,
    )
    grid_result = runner.run(
        partitions.train, partitions.folds, grid, n_predictors, strata=config.strata
    )

    metrics = aggregate(grid_result)
    best = select_best(metrics, grid_result, metric=config.selection_metric)
    ranked = top_n(metrics, metric=config.selection_metric, n=config.top_n)
    confusion = resampled_confusion(grid_result, best.config_id)
    workflow = build_workflow(
        family,
        best.params,
        correlation_threshold=config.correlation_threshold,
        random_state=config.random_state,
    )
    try:
        fit_workflow(workflow, X_train, partitions.train[config.strata].to_numpy())
    except Exception as exc:
        raise FitFailure(best.config_id, "tuned", str(exc)) from exc

    result = FamilyResult(
        family=family.name,
        grid_result=grid_result,
        metrics=metrics,
        top_n=ranked,
        confusion=confusion,
        best=best,
        workflow=workflow,
        failures=grid_result.failures,
    )
    log.info(
        "family_tuned",
        best=best.config_id,
        params=best.params,
        metric=best.metric,
        mean=round(best.mean, 4),
        failed_cells=len(grid_result.failures),
    )

    if store is not None:
        store.save_family(
            family.name,
            metrics=metrics,
            top_n=ranked,
            confusion=confusion,
            folds=grid_result.to_frame(),
            best=best,
            workflow=workflow,
            failures=grid_result.failures,
            config_errors=grid_result.config_errors,
        )
    return result


# ---------------------------------------------------------------------------
# Comparison and finalization
# ---------------------------------------------------------------------------


def comparison_table(results: Iterable[FamilyResult]) -> pd.DataFrame:
    """One row per family: best config plus one column per metric mean."""
    rows = []
    for r in results:
        rows.append(
            {
                "family": r.family,
                "config_id": r.best.config_id,
                **{f"param_{k}": v for k, v in r.best.params.items()},
                **r.best_metrics(),
            }
        )
    return pd.DataFrame.from_records(rows)


def rank_families(results: Iterable[FamilyResult]) -> list[FamilyResult]:
    """Families sorted by their best mean selection metric, descending (stable)."""
    return sorted(results, key=lambda r: -_sort_value(r.best.mean))


def select_winner(results: Iterable[FamilyResult]) -> FamilyResult:
    """The family with the highest best-mean selection metric.

    Ties go to the family listed first.
    """
    results = list(results)
    if not results:
        raise ValueError("No family results to compare")
    return max(results, key=lambda r: _sort_value(r.best.mean))


def finalize(
    winner: FamilyResult,
    partitions: Partitions,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> tuple[TestMetrics, object]:
    """Refit the winner on the whole training partition and score the test set once.

    Raises
    ------
    FitFailure
        If the final fit fails; there is no fallback model.
    """
    X_train = predictor_matrix(partitions.train).to_numpy()
    y_train = partitions.train[config.strata].to_numpy()
    X_test = predictor_matrix(partitions.test).to_numpy()
    y_test = partitions.test[config.strata].to_numpy()

    model = clone(winner.workflow)
    try:
        predicted, prob_up = fit_and_predict(model, X_train, y_train, X_test)
    except Exception as exc:
        raise FitFailure(winner.best.config_id, "final", str(exc)) from exc

    test_metrics = TestMetrics(
        family=winner.family,
        config_id=winner.best.config_id,
        params=dict(winner.best.params),
        metrics=score_predictions(y_test, predicted, prob_up, METRICS),
        n_rows=len(y_test),
    )
    logger.info(
        "final_model_scored",
        family=winner.family,
        config_id=winner.best.config_id,
        **{k: round(v, 4) for k, v in test_metrics.metrics.items()},
    )
    return test_metrics, model


def run_pipeline(
    raw: pd.DataFrame,
    config: PipelineConfig = DEFAULT_CONFIG,
    store: ResultStore | None = None,
    families: Iterable[str] | None = None,
) -> PipelineReport:
    """Execute the full selection pipeline on a raw frame.

    Parameters
    ----------
    raw : pd.DataFrame
        Raw rows with ``Year, Lag1..Lag5, Volume, Direction`` (``Today``
        is dropped if present).
    config : PipelineConfig
        Run configuration.
    store : ResultStore | None
        Result store; when given, every family and the final model are
        persisted.
    families : Iterable[str] | None
        Family names to tune (default: all four).
    """
    observations, _ = prepare_observations(raw, random_state=config.random_state)
    partitions = prepare_partitions(observations, config)

    names = list(families) if families is not None else list(FAMILIES)
    results = [tune_family(FAMILIES[n], partitions, config, store) for n in names]
    return _compare(results, partitions, config, store)


def compare_stored(
    store: ResultStore,
    raw: pd.DataFrame,
    config: PipelineConfig = DEFAULT_CONFIG,
    families: Iterable[str] | None = None,
) -> PipelineReport:
    """Final stage only: reload stored family results and evaluate the winner.

    The same seeds rebuild the same partitions, so the refit sees exactly
    the training rows the grids were tuned on.
    """
    observations, _ = prepare_observations(raw, random_state=config.random_state)
    partitions = prepare_partitions(observations, config)
    names = list(families) if families is not None else store.families()
    results = [FamilyResult.from_stored(store.load_family(n)) for n in names]
    return _compare(results, partitions, config, store)


def _compare(
    results: list[FamilyResult],
    partitions: Partitions,
    config: PipelineConfig,
    store: ResultStore | None,
) -> PipelineReport:
    ranked = rank_families(results)
    winner = select_winner(ranked)
    logger.info(
        "family_winner",
        family=winner.family,
        config_id=winner.best.config_id,
        mean=round(winner.best.mean, 4),
        ranking=[r.family for r in ranked],
    )
    test_metrics, model = finalize(winner, partitions, config)
    if store is not None:
        store.save_final(model, {**test_metrics.as_row(), "n_rows": test_metrics.n_rows})
    return PipelineReport(
        families=ranked,
        comparison=comparison_table(ranked),
        winner=winner,
        test_metrics=test_metrics,
        final_model=model,
    )


def _sort_value(value: float) -> float:
    return value if np.isfinite(value) else -np.inf
