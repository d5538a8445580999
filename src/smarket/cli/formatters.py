"""Rich output formatters for the SMARKET CLI.

Each function accepts plain data and returns a Rich renderable (Table,
Panel, etc.).  The caller is responsible for printing via
``console.print()``.  This separation keeps the formatters testable
without capturing stdout.
"""

from __future__ import annotations

import math

import pandas as pd
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from smarket.config.settings import METRICS


def _fmt(value, digits: int = 3) -> str:
    if value is None:
        return "-"
    try:
        value = float(value)
    except (TypeError, ValueError):
        return str(value)
    if math.isnan(value):
        return "-"
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) >= 1:
        return f"{int(value)}"
    if abs(value) < 1e-3:
        return f"{value:.2e}"
    return f"{value:.{digits}f}"


def format_features_table(frame: pd.DataFrame, limit: int = 10) -> Table:
    """Render the first ``limit`` engineered rows.

    Parameters
    ----------
    frame : pd.DataFrame
        Output of ``engineer_features``.
    limit : int
        Number of rows shown.
    """
    columns = ["index", "lag_1", "cc_return", "cc_avg", "cc_over_avg", "days_over_avg", "direction"]
    table = Table(title="Engineered Features", show_lines=False)
    for col in columns:
        table.add_column(col, justify="left" if col == "direction" else "right")

    for _, row in frame.head(limit).iterrows():
        cells = []
        for col in columns:
            value = row[col]
            if col == "cc_over_avg":
                cells.append("[green]T[/green]" if value else "[red]F[/red]")
            elif col == "days_over_avg":
                cells.append("-" if pd.isna(value) else str(int(value)))
            elif col in ("index", "direction"):
                cells.append(str(value))
            else:
                cells.append(_fmt(value, 5))
        table.add_row(*cells)
    return table


def format_top_n_table(family: str, ranked: pd.DataFrame, metric: str = "roc_auc") -> Table:
    """Render a ranked top-N subtable for one family."""
    table = Table(title=f"{family}: top {len(ranked)} by {metric}", show_lines=True)
    param_cols = [
        c
        for c in ranked.columns
        if c not in ("rank", "config_id", "metric", "mean", "std_err", "n")
    ]
    table.add_column("Rank", justify="right", style="dim")
    table.add_column("Config", style="cyan")
    for col in param_cols:
        table.add_column(col, justify="right")
    table.add_column("Mean", justify="right", style="bold")
    table.add_column("Std Err", justify="right")
    table.add_column("n", justify="right")

    for _, row in ranked.iterrows():
        table.add_row(
            str(row["rank"]),
            str(row["config_id"]),
            *[_fmt(row[c]) for c in param_cols],
            _fmt(row["mean"], 4),
            _fmt(row["std_err"], 4),
            str(int(row["n"])),
        )
    return table


def format_confusion_matrix(family: str, confusion: pd.DataFrame) -> Table:
    """Render a 2x2 resampled confusion matrix (rows predicted, columns truth)."""
    table = Table(title=f"{family}: resampled confusion matrix", show_lines=True)
    table.add_column("Prediction \\ Truth", style="bold")
    for col in confusion.columns:
        table.add_column(str(col), justify="right")
    for label, row in confusion.iterrows():
        table.add_row(str(label), *[str(int(v)) for v in row])
    return table


def format_comparison_table(comparison: pd.DataFrame, winner: str | None = None) -> Table:
    """Render the per-family best-config comparison with one column per metric."""
    table = Table(title="Family Comparison (resampled training metrics)", show_lines=True)
    table.add_column("Family", style="bold")
    table.add_column("Config", style="cyan")
    for metric in METRICS:
        table.add_column(metric, justify="right")

    for _, row in comparison.iterrows():
        name = row["family"]
        styled = f"[green]{name}[/green]" if name == winner else name
        table.add_row(
            styled,
            str(row["config_id"]),
            *[_fmt(row.get(m), 4) for m in METRICS],
        )
    return table


def format_test_metrics(test_metrics) -> Panel:
    """Render the held-out evaluation of the winning model.

    Parameters
    ----------
    test_metrics : TestMetrics
        Output of ``finalize``.
    """
    params = ", ".join(f"{k}={_fmt(v)}" for k, v in test_metrics.params.items())
    lines = [
        f"[bold]Winner:[/bold] {test_metrics.family} ({test_metrics.config_id}: {params})",
        f"[bold]Test rows:[/bold] {test_metrics.n_rows}",
        "",
    ]
    for metric in METRICS:
        lines.append(f"  {metric:<10} {_fmt(test_metrics.metrics.get(metric), 4)}")
    return Panel(Text.from_markup("\n".join(lines)), title="Test Set Evaluation", border_style="green")


def format_failures(family: str, failures: list, limit: int = 10) -> Panel:
    """Render failed (config, fold) cells so they are never silently dropped."""
    if not failures:
        return Panel("[green]All cells fitted.[/green]", title=f"{family}: failures", border_style="dim")
    lines = [f"[yellow]{len(failures)} cell(s) recorded as missing[/yellow]", ""]
    for config_id, fold_id, message in failures[:limit]:
        if len(message) > 60:
            message = message[:57] + "..."
        lines.append(f"  {config_id} {fold_id}: {escape(message)}")
    if len(failures) > limit:
        lines.append(f"  ... {len(failures) - limit} more")
    return Panel("\n".join(lines), title=f"{family}: failures", border_style="yellow")
