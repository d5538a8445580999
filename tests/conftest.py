"""Shared test fixtures for the SMARKET test suite."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from smarket.config.settings import DEFAULT_CONFIG


def make_raw_frame(n_rows: int = 200, seed: int = 7) -> pd.DataFrame:
    """Synthetic rows shaped like the raw daily index table.

    ``Direction`` follows the sign of ``Today`` and ``Lag1`` is yesterday's
    ``Today``, so the series is internally consistent.
    """
    rng = np.random.RandomState(seed)
    today = rng.normal(0.0, 1.1, n_rows + 5).round(3)
    lags = {f"Lag{k}": today[5 - k : 5 - k + n_rows] for k in range(1, 6)}
    frame = pd.DataFrame(
        {
            "Year": 2001 + np.arange(n_rows) // 250,
            **lags,
            "Volume": (1.2 + 0.3 * rng.rand(n_rows)).round(4),
            "Today": today[5:],
        }
    )
    frame["Direction"] = np.where(frame["Today"] >= 0, "Up", "Down")
    return frame


@pytest.fixture
def raw_frame() -> pd.DataFrame:
    """200 synthetic raw rows."""
    return make_raw_frame()


@pytest.fixture
def small_config(tmp_path: Path):
    """Fast configuration: 3 folds x 2 repeats, store under tmp_path."""
    return DEFAULT_CONFIG.with_overrides(
        n_folds=3, n_repeats=2, store_path=tmp_path / "results"
    )


@pytest.fixture
def tmp_store_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for result store tests."""
    return tmp_path / "store"


@pytest.fixture
def partitions(raw_frame, small_config):
    """Train/test partitions and 3x2 folds built from the synthetic rows."""
    from smarket.data.loader import prepare_observations
    from smarket.model.pipeline import prepare_partitions

    observations, _ = prepare_observations(raw_frame, random_state=small_config.random_state)
    return prepare_partitions(observations, small_config)


FAST_GRID_SIZES = {"boost_tree": 2, "rand_forest": 3, "svm_rbf": 2, "mlp": 2}


@pytest.fixture
def fast_families(monkeypatch):
    """Shrink every family's grid so end-to-end runs stay quick."""
    from smarket.model import families, pipeline
    from smarket.model.families import FAMILIES

    shrunk = {
        name: replace(family, grid_config=replace(family.grid_config, size=FAST_GRID_SIZES[name]))
        for name, family in FAMILIES.items()
    }
    monkeypatch.setattr(pipeline, "FAMILIES", shrunk)
    monkeypatch.setattr(families, "FAMILIES", shrunk)
    return shrunk
