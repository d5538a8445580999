"""Tests for the model-family capability interface and its four implementations."""

from __future__ import annotations

import numpy as np
import pytest
from sklearn.calibration import CalibratedClassifierCV
from sklearn.pipeline import Pipeline

from smarket.config.settings import MLP_EPOCHS
from smarket.errors import ConfigurationError
from smarket.model.families import (
    FAMILIES,
    HyperparameterConfig,
    build_workflow,
    get_family,
    make_grid,
)


class TestGrids:
    """Tests for per-family grid enumeration."""

    def test_boost_tree_grid(self):
        grid = FAMILIES["boost_tree"].grid(n_predictors=10)
        trees = [c.params["trees"] for c in grid]
        assert len(grid) == 10
        assert trees[0] == 5
        assert trees[-1] == 100
        assert trees == sorted(trees)
        assert trees[1] == 16

    def test_config_ids_in_order(self):
        grid = FAMILIES["boost_tree"].grid(n_predictors=10)
        assert [c.config_id for c in grid][:3] == ["Model01", "Model02", "Model03"]

    def test_rand_forest_grid_within_bounds(self):
        grid = FAMILIES["rand_forest"].grid(n_predictors=8, seed=42)
        assert 1 < len(grid) <= 20
        for c in grid:
            assert 1 <= c.params["mtry"] <= 8
            assert 5 <= c.params["trees"] <= 100

    def test_rand_forest_grid_deterministic(self):
        a = FAMILIES["rand_forest"].grid(n_predictors=8, seed=42)
        b = FAMILIES["rand_forest"].grid(n_predictors=8, seed=42)
        assert [c.as_dict() for c in a] == [c.as_dict() for c in b]

    def test_svm_grid_log_spaced(self):
        grid = FAMILIES["svm_rbf"].grid(n_predictors=8)
        sigmas = np.array([c.params["rbf_sigma"] for c in grid])
        assert sigmas[0] == pytest.approx(1e-10)
        assert sigmas[-1] == pytest.approx(1.0)
        ratios = sigmas[1:] / sigmas[:-1]
        np.testing.assert_allclose(ratios, ratios[0])

    def test_mlp_grid(self):
        grid = FAMILIES["mlp"].grid(n_predictors=8)
        assert [c.params["hidden_units"] for c in grid] == list(range(1, 11))

    def test_make_grid_dedups(self):
        grid = make_grid([{"trees": 5}, {"trees": 5}, {"trees": 9}])
        assert [c.as_dict() for c in grid] == [{"trees": 5}, {"trees": 9}]


class TestValidate:
    """Tests for configuration validation."""

    def test_mtry_above_predictors_rejected(self):
        with pytest.raises(ConfigurationError, match="mtry"):
            FAMILIES["rand_forest"].validate({"mtry": 12, "trees": 50}, n_predictors=9)

    def test_mtry_within_predictors_accepted(self):
        FAMILIES["rand_forest"].validate({"mtry": 9, "trees": 50}, n_predictors=9)

    def test_non_positive_rejected(self):
        with pytest.raises(ConfigurationError):
            FAMILIES["boost_tree"].validate({"trees": 0}, n_predictors=9)

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError):
            get_family("knn")


class TestBuildWorkflow:
    """Tests for build_workflow and the learner factories."""

    def test_workflow_shape(self):
        wf = build_workflow(FAMILIES["boost_tree"], {"trees": 20})
        assert isinstance(wf, Pipeline)
        assert [name for name, _ in wf.steps] == ["preprocess", "model"]
        assert wf.named_steps["model"].n_estimators == 20

    def test_rand_forest_params(self):
        wf = build_workflow(FAMILIES["rand_forest"], {"mtry": 3, "trees": 40})
        model = wf.named_steps["model"]
        assert model.max_features == 3
        assert model.n_estimators == 40

    def test_svm_params(self):
        wf = build_workflow(FAMILIES["svm_rbf"], {"rbf_sigma": 0.01})
        model = wf.named_steps["model"]
        assert isinstance(model, CalibratedClassifierCV)
        assert model.method == "sigmoid"
        assert model.estimator.kernel == "rbf"
        assert model.estimator.gamma == 0.01
        assert "yeo_johnson" in wf.named_steps["preprocess"].named_steps

    def test_mlp_params(self):
        wf = build_workflow(FAMILIES["mlp"], {"hidden_units": 4})
        model = wf.named_steps["model"]
        assert model.hidden_layer_sizes == (4,)
        assert model.max_iter == MLP_EPOCHS

    @pytest.mark.parametrize("name", sorted(FAMILIES))
    def test_fit_predict_each_family(self, name):
        rng = np.random.RandomState(0)
        X = rng.randn(120, 5)
        y = np.where(X[:, 0] + 0.5 * rng.randn(120) > 0, "Up", "Down")
        params = FAMILIES[name].grid(n_predictors=5)[-1].params
        wf = build_workflow(FAMILIES[name], params)
        wf.fit(X, y)
        proba = wf.predict_proba(X)
        assert proba.shape == (120, 2)
        assert set(wf.classes_) == {"Up", "Down"}


class TestHyperparameterConfig:
    def test_as_dict_copy(self):
        cfg = HyperparameterConfig("Model01", {"trees": 5})
        d = cfg.as_dict()
        d["trees"] = 99
        assert cfg.params["trees"] == 5
