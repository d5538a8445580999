"""Tests for the model-selection orchestrator.

End-to-end runs use the 200-row synthetic frame, 3 folds x 2 repeats, and
shrunken grids (see ``fast_families``). The full-dataset regression check
only runs when ``SMARKET_CSV`` points at the real daily CSV.
"""

from __future__ import annotations

import os

import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline

from smarket.config.settings import DEFAULT_CONFIG, METRICS
from smarket.data.loader import prepare_observations, read_csv
from smarket.data.store.result_store import ResultStore
from smarket.errors import FitFailure
from smarket.model.families import FAMILIES
from smarket.model.features import predictor_matrix
from smarket.model.pipeline import (
    FamilyResult,
    compare_stored,
    comparison_table,
    finalize,
    prepare_partitions,
    rank_families,
    run_pipeline,
    select_winner,
    tune_family,
)
from smarket.model.selection import BestConfig


def _family_result(name: str, mean: float, workflow=None) -> FamilyResult:
    metrics = pd.DataFrame(
        {
            "config_id": ["Model01"] * 2,
            "metric": ["roc_auc", "accuracy"],
            "mean": [mean, 0.5],
            "std_err": [0.01, 0.01],
            "n": [6, 6],
        }
    )
    return FamilyResult(
        family=name,
        grid_result=None,
        metrics=metrics,
        top_n=metrics.iloc[:1],
        confusion=pd.DataFrame(),
        best=BestConfig("Model01", {"trees": 5}, "roc_auc", mean, 0.01, 6),
        workflow=workflow,
    )


class TestPreparePartitions:
    """Tests for prepare_partitions."""

    def test_seed_row_dropped(self, partitions, raw_frame):
        total = len(partitions.train) + len(partitions.test)
        assert total == len(raw_frame) - 1

    def test_features_present(self, partitions):
        for column in ("cc_return", "cc_avg", "cc_over_avg", "cc_avg_diff", "days_over_avg"):
            assert column in partitions.train.columns
        assert partitions.train["days_over_avg"].notna().all()

    def test_folds_cover_train(self, partitions, small_config):
        assert len(partitions.folds) == small_config.n_folds * small_config.n_repeats
        assert partitions.folds.n_rows == len(partitions.train)


class TestTuneFamily:
    """Tests for tune_family."""

    def test_best_is_top_ranked(self, partitions, small_config, fast_families):
        result = tune_family(fast_families["boost_tree"], partitions, small_config)
        assert result.best.config_id == result.top_n.iloc[0]["config_id"]
        assert result.best.mean == pytest.approx(result.top_n.iloc[0]["mean"])
        assert len(result.top_n) == 2
        assert result.confusion.shape == (2, 2)

    def test_persists_to_store(self, partitions, small_config, fast_families, tmp_store_dir):
        store = ResultStore(tmp_store_dir)
        result = tune_family(fast_families["mlp"], partitions, small_config, store)
        stored = store.load_family("mlp")
        assert stored.best.config_id == result.best.config_id
        X_test = predictor_matrix(partitions.test).to_numpy()
        np.testing.assert_allclose(
            stored.workflow.predict_proba(X_test), result.workflow.predict_proba(X_test)
        )
        pd.testing.assert_frame_equal(
            stored.metrics.reset_index(drop=True), result.metrics.reset_index(drop=True)
        )

    def test_rand_forest_grid_bounded_by_predictors(
        self, partitions, small_config, fast_families
    ):
        result = tune_family(fast_families["rand_forest"], partitions, small_config)
        assert result.grid_result.config_errors == {}
        assert result.best.params["mtry"] >= 1

    def test_best_metrics(self, partitions, small_config, fast_families):
        result = tune_family(fast_families["boost_tree"], partitions, small_config)
        assert list(result.best_metrics()) == list(METRICS)


class TestSelectWinner:
    """Tests for family ranking and winner selection."""

    def test_highest_mean_wins(self):
        results = [_family_result("a", 0.51), _family_result("b", 0.56), _family_result("c", 0.53)]
        assert select_winner(results).family == "b"
        assert [r.family for r in rank_families(results)] == ["b", "c", "a"]

    def test_tie_goes_to_first_listed(self):
        results = [_family_result("a", 0.55), _family_result("b", 0.55)]
        assert select_winner(results).family == "a"
        assert [r.family for r in rank_families(results)] == ["a", "b"]

    def test_nan_ranks_last(self):
        results = [_family_result("a", np.nan), _family_result("b", 0.4)]
        assert select_winner(results).family == "b"
        assert [r.family for r in rank_families(results)] == ["b", "a"]

    def test_empty(self):
        with pytest.raises(ValueError):
            select_winner([])

    def test_comparison_table(self):
        table = comparison_table([_family_result("a", 0.51), _family_result("b", 0.56)])
        assert list(table.columns) == ["family", "config_id", "param_trees", "roc_auc", "accuracy"]
        assert table["roc_auc"].tolist() == [0.51, 0.56]


class TestFinalize:
    """Tests for finalize."""

    def test_scores_test_partition(self, partitions, small_config):
        winner = _family_result(
            "logit", 0.5, Pipeline([("model", LogisticRegression())])
        )
        test_metrics, model = finalize(winner, partitions, small_config)
        assert test_metrics.n_rows == len(partitions.test)
        assert list(test_metrics.metrics) == list(METRICS)
        assert model is not winner.workflow
        assert hasattr(model, "classes_")

    def test_failed_final_fit(self, partitions, small_config):
        winner = _family_result(
            "broken", 0.5, Pipeline([("model", LogisticRegression(solver="not-a-solver"))])
        )
        with pytest.raises(FitFailure) as info:
            finalize(winner, partitions, small_config)
        assert info.value.fold_id == "final"


class TestRunPipeline:
    """End-to-end tests for run_pipeline and compare_stored."""

    def test_full_run(self, raw_frame, small_config, fast_families, tmp_store_dir):
        store = ResultStore(tmp_store_dir)
        report = run_pipeline(raw_frame, small_config, store)
        assert sorted(r.family for r in report.families) == sorted(fast_families)
        assert report.winner.family == report.families[0].family
        best_means = [r.best.mean for r in report.families]
        assert report.winner.best.mean == max(best_means)
        assert len(report.comparison) == 4
        assert set(METRICS) <= set(report.comparison.columns)
        assert store.families() == sorted(fast_families)
        _, summary = store.load_final()
        assert summary["family"] == report.winner.family

    def test_family_subset(self, raw_frame, small_config, fast_families):
        report = run_pipeline(raw_frame, small_config, families=["boost_tree"])
        assert report.winner.family == "boost_tree"

    def test_compare_stored_matches_run(
        self, raw_frame, small_config, fast_families, tmp_store_dir
    ):
        store = ResultStore(tmp_store_dir)
        report = run_pipeline(raw_frame, small_config, store, families=["boost_tree", "mlp"])
        again = compare_stored(store, raw_frame, small_config)
        assert again.winner.family == report.winner.family
        assert again.winner.best.config_id == report.winner.best.config_id
        for metric in METRICS:
            np.testing.assert_allclose(
                again.test_metrics.metrics[metric],
                report.test_metrics.metrics[metric],
                equal_nan=True,
            )

    def test_deterministic(self, raw_frame, small_config, fast_families):
        a = run_pipeline(raw_frame, small_config, families=["rand_forest"])
        b = run_pipeline(raw_frame, small_config, families=["rand_forest"])
        assert a.winner.best == b.winner.best
        assert a.test_metrics.metrics == pytest.approx(b.test_metrics.metrics, nan_ok=True)


REAL_DATA = pytest.mark.skipif(not os.environ.get("SMARKET_CSV"), reason="SMARKET_CSV not set")


@pytest.fixture(scope="module")
def boost_tree_on_real_data():
    """Default-config boost_tree tuning on the real table (seeds 123/456, 5x5 folds)."""
    config = DEFAULT_CONFIG.with_overrides(n_jobs=-1)
    observations, _ = prepare_observations(
        read_csv(os.environ["SMARKET_CSV"]), random_state=config.random_state
    )
    partitions = prepare_partitions(observations, config)
    return tune_family(FAMILIES["boost_tree"], partitions, config)


@REAL_DATA
class TestFullDataset:
    """End-to-end properties of the real 1250-row table."""

    def test_full_run(self, tmp_path):
        raw = read_csv(os.environ["SMARKET_CSV"])
        config = DEFAULT_CONFIG.with_overrides(n_jobs=-1, store_path=tmp_path / "results")
        report = run_pipeline(raw, config, ResultStore(config.store_path))
        assert report.test_metrics.n_rows in (374, 375, 376)
        assert len(report.families) == 4
        for result in report.families:
            assert 0.4 <= result.best.mean <= 0.7
        assert 0.4 <= report.test_metrics.metrics["accuracy"] <= 0.7

    def test_boost_tree_selects_100_trees(self, boost_tree_on_real_data):
        assert boost_tree_on_real_data.best.params["trees"] == 100

    @pytest.mark.xfail(
        strict=False,
        reason="trend sanity check, not an invariant: tree-count monotonicity was "
        "observed with the original learner stack",
    )
    def test_boost_tree_roc_auc_non_decreasing_in_trees(self, boost_tree_on_real_data):
        metrics = boost_tree_on_real_data.metrics
        roc = metrics[metrics["metric"] == "roc_auc"].sort_values("trees", kind="mergesort")
        assert (np.diff(roc["mean"].to_numpy()) >= 0).all()
