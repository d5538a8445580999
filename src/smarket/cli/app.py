"""SMARKET CLI -- tune, compare, and inspect the four model families.

Commands:
    features -- Preview the engineered feature columns
    tune     -- Tune one family and persist its results
    show     -- Display a family's stored top-N table, confusion matrix, failures
    compare  -- Reload stored families, pick the winner, evaluate on the test set
    run      -- Tune every family, then compare (tune + compare in one go)
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel

from smarket.cli.formatters import (
    format_comparison_table,
    format_confusion_matrix,
    format_failures,
    format_features_table,
    format_test_metrics,
    format_top_n_table,
)
from smarket.config.settings import DEFAULT_CONFIG, PipelineConfig
from smarket.errors import (
    ConfigurationError,
    DataError,
    FitFailure,
    PersistenceError,
    SelectionError,
)

app = typer.Typer(
    name="smarket",
    help="Cross-validated model selection for daily index direction",
    rich_markup_mode="rich",
)
console = Console()


def _config(
    store: Optional[Path] = None,
    n_jobs: Optional[int] = None,
    split_seed: Optional[int] = None,
    fold_seed: Optional[int] = None,
) -> PipelineConfig:
    return DEFAULT_CONFIG.with_overrides(
        store_path=store, n_jobs=n_jobs, split_seed=split_seed, fold_seed=fold_seed
    )


def _fail(title: str, exc: Exception) -> None:
    console.print(Panel(f"[red]{exc}[/red]", title=title, border_style="red"))
    raise typer.Exit(code=1)


def _load_raw(data: Path):
    from smarket.data.loader import read_csv

    try:
        return read_csv(data)
    except DataError as exc:
        _fail("Data", exc)


# ---------------------------------------------------------------------------
# features
# ---------------------------------------------------------------------------


@app.command()
def features(
    data: Path = typer.Option(..., help="Path to the raw daily CSV"),
    limit: int = typer.Option(10, help="Number of rows to display"),
) -> None:
    """Preview cc_return, running average and the over-average streak counter."""
    from smarket.data.loader import prepare_observations
    from smarket.model.features import engineer_features

    raw = _load_raw(data)
    try:
        observations, _ = prepare_observations(raw)
    except DataError as exc:
        _fail("Data", exc)
    console.print(format_features_table(engineer_features(observations), limit=limit))


# ---------------------------------------------------------------------------
# tune
# ---------------------------------------------------------------------------


@app.command()
def tune(
    family: str = typer.Argument(..., help="boost_tree, rand_forest, svm_rbf or mlp"),
    data: Path = typer.Option(..., help="Path to the raw daily CSV"),
    store: Path = typer.Option(DEFAULT_CONFIG.store_path, help="Result store directory"),
    n_jobs: int = typer.Option(1, help="Parallel workers for the grid (-1 = all cores)"),
    split_seed: Optional[int] = typer.Option(None, help="Seed for the train/test split"),
    fold_seed: Optional[int] = typer.Option(None, help="Seed for the repeated folds"),
) -> None:
    """Tune one model family over its grid and persist the results."""
    from smarket.data.loader import prepare_observations
    from smarket.data.store.result_store import ResultStore
    from smarket.model.families import get_family
    from smarket.model.pipeline import prepare_partitions, tune_family

    config = _config(store, n_jobs, split_seed, fold_seed)
    raw = _load_raw(data)
    try:
        model_family = get_family(family)
        observations, _ = prepare_observations(raw, random_state=config.random_state)
        partitions = prepare_partitions(observations, config)
        result = tune_family(model_family, partitions, config, ResultStore(config.store_path))
    except ConfigurationError as exc:
        _fail("Configuration", exc)
    except DataError as exc:
        _fail("Data", exc)
    except SelectionError as exc:
        _fail("Selection", exc)
    except FitFailure as exc:
        _fail("Final Fit", exc)
    except PersistenceError as exc:
        _fail("Result Store", exc)

    console.print(format_top_n_table(family, result.top_n, config.selection_metric))
    console.print(format_confusion_matrix(family, result.confusion))
    console.print(format_failures(family, result.failures))


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@app.command()
def show(
    family: str = typer.Argument(..., help="Stored family name"),
    store: Path = typer.Option(DEFAULT_CONFIG.store_path, help="Result store directory"),
) -> None:
    """Display a family's stored ranking, confusion matrix and failures."""
    from smarket.data.store.result_store import ResultStore

    try:
        stored = ResultStore(store).load_family(family)
    except PersistenceError as exc:
        _fail("Result Store", exc)

    failures = [(f["config_id"], f["fold_id"], f["error"]) for f in stored.failures]
    console.print(format_top_n_table(family, stored.top_n, stored.best.metric))
    console.print(format_confusion_matrix(family, stored.confusion))
    console.print(format_failures(family, failures))


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------


@app.command()
def compare(
    data: Path = typer.Option(..., help="Path to the raw daily CSV"),
    store: Path = typer.Option(DEFAULT_CONFIG.store_path, help="Result store directory"),
    family: Optional[List[str]] = typer.Option(
        None, help="Families to compare (default: all stored)"
    ),
    split_seed: Optional[int] = typer.Option(None, help="Seed for the train/test split"),
    fold_seed: Optional[int] = typer.Option(None, help="Seed for the repeated folds"),
) -> None:
    """Pick the best stored family, refit it on the training set, score the test set."""
    from smarket.data.store.result_store import ResultStore
    from smarket.model.pipeline import compare_stored

    config = _config(store, None, split_seed, fold_seed)
    raw = _load_raw(data)
    try:
        result_store = ResultStore(config.store_path)
        names = family or result_store.families()
        if not names:
            raise PersistenceError(f"No stored family results in {config.store_path}")
        report = compare_stored(result_store, raw, config, names)
    except DataError as exc:
        _fail("Data", exc)
    except FitFailure as exc:
        _fail("Final Fit", exc)
    except PersistenceError as exc:
        _fail("Result Store", exc)

    console.print(format_comparison_table(report.comparison, winner=report.winner.family))
    console.print(format_test_metrics(report.test_metrics))


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@app.command()
def run(
    data: Path = typer.Option(..., help="Path to the raw daily CSV"),
    store: Path = typer.Option(DEFAULT_CONFIG.store_path, help="Result store directory"),
    family: Optional[List[str]] = typer.Option(
        None, help="Families to tune (default: all four)"
    ),
    n_jobs: int = typer.Option(1, help="Parallel workers for the grid (-1 = all cores)"),
    split_seed: Optional[int] = typer.Option(None, help="Seed for the train/test split"),
    fold_seed: Optional[int] = typer.Option(None, help="Seed for the repeated folds"),
) -> None:
    """Tune every family, persist each, then evaluate the overall winner."""
    from smarket.data.store.result_store import ResultStore
    from smarket.model.families import get_family
    from smarket.model.pipeline import run_pipeline

    config = _config(store, n_jobs, split_seed, fold_seed)
    raw = _load_raw(data)
    try:
        names = [get_family(name).name for name in family] if family else None
        report = run_pipeline(raw, config, ResultStore(config.store_path), names)
    except ConfigurationError as exc:
        _fail("Configuration", exc)
    except DataError as exc:
        _fail("Data", exc)
    except SelectionError as exc:
        _fail("Selection", exc)
    except FitFailure as exc:
        _fail("Final Fit", exc)
    except PersistenceError as exc:
        _fail("Result Store", exc)

    for result in report.families:
        console.print(format_top_n_table(result.family, result.top_n, config.selection_metric))
        if result.failures:
            console.print(format_failures(result.family, result.failures))
    console.print(format_comparison_table(report.comparison, winner=report.winner.family))
    console.print(format_test_metrics(report.test_metrics))


if __name__ == "__main__":
    app()
