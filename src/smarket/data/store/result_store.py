"""Durable per-family result store.

After each family's grid run the orchestrator writes everything the
comparison stage needs, keyed by family name, so that comparison can run
later without recomputing any grid:

    base_path / <family> / metrics.parquet     aggregated (config, metric) table
    base_path / <family> / top_n.parquet       ranked subtable
    base_path / <family> / confusion.parquet   resampled confusion matrix
    base_path / <family> / folds.parquet       raw per-fold scores
    base_path / <family> / best.json           best config + failure report
    base_path / <family> / workflow/           finalized workflow (MLflow sklearn format)
    base_path / final / model/                 refit winning model

Any I/O, Arrow or MLflow failure surfaces as ``PersistenceError``.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path

import mlflow.sklearn
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import structlog
from mlflow.exceptions import MlflowException

from smarket.errors import PersistenceError
from smarket.model.selection import BestConfig

logger = structlog.get_logger()

_PIP_REQUIREMENTS = ["scikit-learn", "lightgbm"]
# skops rejects LGBMClassifier and CorrelationFilter as untrusted types
_SERIALIZATION_FORMAT = mlflow.sklearn.SERIALIZATION_FORMAT_CLOUDPICKLE
_FINAL_KEY = "final"
_TABLES = ("metrics", "top_n", "confusion", "folds")
_ERRORS = (OSError, pa.ArrowException, MlflowException, json.JSONDecodeError, KeyError)


@dataclass
class StoredFamily:
    """One family's persisted results, as reloaded from the store."""

    family: str
    metrics: pd.DataFrame
    top_n: pd.DataFrame
    confusion: pd.DataFrame
    folds: pd.DataFrame
    best: BestConfig
    workflow: object
    failures: list[dict] = field(default_factory=list)
    config_errors: dict[str, str] = field(default_factory=dict)


class ResultStore:
    """Directory-backed store of per-family grid results.

    Parameters
    ----------
    base_path : str | Path
        Root directory. Created on first use.
    """

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create store at {self.base_path}: {exc}") from exc

    def family_path(self, family: str) -> Path:
        return self.base_path / family

    def save_family(
        self,
        family: str,
        metrics: pd.DataFrame,
        top_n: pd.DataFrame,
        confusion: pd.DataFrame,
        folds: pd.DataFrame,
        best: BestConfig,
        workflow,
        failures: list[tuple[str, str, str]] | None = None,
        config_errors: dict[str, str] | None = None,
    ) -> Path:
        """Persist one family's results, replacing any previous entry.

        Returns
        -------
        Path
            The family's directory.
        """
        log = logger.bind(family=family)
        path = self.family_path(family)
        try:
            path.mkdir(parents=True, exist_ok=True)
            self._write_table(path / "metrics.parquet", metrics)
            self._write_table(path / "top_n.parquet", top_n)
            self._write_table(path / "confusion.parquet", confusion, preserve_index=True)
            self._write_table(path / "folds.parquet", folds)

            report = {
                "family": family,
                "best": asdict(best),
                "failures": [
                    {"config_id": c, "fold_id": f, "error": e} for c, f, e in (failures or [])
                ],
                "config_errors": dict(config_errors or {}),
            }
            (path / "best.json").write_text(json.dumps(report, indent=2, default=float))

            self._save_model(path / "workflow", workflow)
        except _ERRORS as exc:
            log.error("result_store_write_failed", error=str(exc))
            raise PersistenceError(f"Failed to persist results for {family}: {exc}") from exc

        log.info("result_store_write", path=str(path), configs=len(top_n))
        return path

    def load_family(self, family: str) -> StoredFamily:
        """Reload one family's results.

        Raises
        ------
        PersistenceError
            If the family was never stored or any artifact is unreadable.
        """
        path = self.family_path(family)
        if not (path / "best.json").exists():
            raise PersistenceError(f"No stored results for family {family!r} in {self.base_path}")
        try:
            tables = {name: self._read_table(path / f"{name}.parquet") for name in _TABLES}
            report = json.loads((path / "best.json").read_text())
            workflow = mlflow.sklearn.load_model(str(path / "workflow"))
        except _ERRORS as exc:
            raise PersistenceError(f"Failed to load results for {family}: {exc}") from exc

        return StoredFamily(
            family=family,
            best=BestConfig(**report["best"]),
            workflow=workflow,
            failures=report.get("failures", []),
            config_errors=report.get("config_errors", {}),
            **tables,
        )

    def families(self) -> list[str]:
        """Names of all families with stored results, sorted."""
        return sorted(
            p.name
            for p in self.base_path.iterdir()
            if p.is_dir() and (p / "best.json").exists()
        )

    def save_final(self, model, summary: dict) -> Path:
        """Persist the refit winning model and its test metrics."""
        path = self.base_path / _FINAL_KEY
        try:
            path.mkdir(parents=True, exist_ok=True)
            self._save_model(path / "model", model)
            (path / "summary.json").write_text(json.dumps(summary, indent=2, default=float))
        except _ERRORS as exc:
            raise PersistenceError(f"Failed to persist final model: {exc}") from exc
        logger.info("result_store_final_write", path=str(path), family=summary.get("family"))
        return path

    def load_final(self) -> tuple[object, dict]:
        path = self.base_path / _FINAL_KEY
        try:
            model = mlflow.sklearn.load_model(str(path / "model"))
            summary = json.loads((path / "summary.json").read_text())
        except _ERRORS as exc:
            raise PersistenceError(f"Failed to load final model: {exc}") from exc
        return model, summary

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _write_table(path: Path, frame: pd.DataFrame, preserve_index: bool = False) -> None:
        table = pa.Table.from_pandas(frame, preserve_index=preserve_index)
        pq.write_table(table, path)

    @staticmethod
    def _read_table(path: Path) -> pd.DataFrame:
        return pq.read_table(path).to_pandas()

    @staticmethod
    def _save_model(path: Path, model) -> None:
        # save_model refuses to write into an existing directory
        if path.exists():
            shutil.rmtree(path)
        mlflow.sklearn.save_model(
            model,
            str(path),
            serialization_format=_SERIALIZATION_FORMAT,
            pip_requirements=_PIP_REQUIREMENTS,
        )
