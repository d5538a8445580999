"""Per-family predictor transform chains.

Every family shares the same base chain:

    1. learned imputation (IterativeImputer driven by bagged regression trees)
    2. zero-variance filter
    3. correlation filter (drop one column of each highly correlated pair)

Kernel and neural-network families additionally standardize predictors and
apply a Yeo-Johnson power transform to reduce skew.

Each chain is fit inside a fold's analysis rows only, so assessment rows
never inform imputation or filtering.
"""

from __future__ import annotations

import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin, clone
from sklearn.ensemble import BaggingRegressor
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.feature_selection import VarianceThreshold
from sklearn.impute import IterativeImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import PowerTransformer, StandardScaler
from sklearn.utils.validation import check_is_fitted


class CorrelationFilter(TransformerMixin, BaseEstimator):
    """Drop columns until no pair exceeds an absolute correlation threshold.

    At each step the column with the largest mean absolute correlation among
    the offending pairs is removed. Columns with undefined correlation
    (constant within the fitted rows) are treated as uncorrelated.

    Parameters
    ----------
    threshold : float
        Absolute Pearson correlation above which a pair is considered
        redundant.
    """

    def __init__(self, threshold: float = 0.9) -> None:
        self.threshold = threshold

    def fit(self, X, y=None):
        X = np.asarray(X, dtype=float)
        n_features = X.shape[1]
        self.n_features_in_ = n_features
        keep = np.ones(n_features, dtype=bool)

        if n_features > 1 and X.shape[0] > 1:
            with np.errstate(invalid="ignore", divide="ignore"):
                corr = np.abs(np.corrcoef(X, rowvar=False))
            corr = np.nan_to_num(corr, nan=0.0)
            np.fill_diagonal(corr, 0.0)

            while True:
                active = np.flatnonzero(keep)
                sub = corr[np.ix_(active, active)]
                if sub.size == 0 or sub.max() <= self.threshold:
                    break
                i, j = np.unravel_index(np.argmax(sub), sub.shape)
                mean_i = sub[i].mean()
                mean_j = sub[j].mean()
                drop = active[i] if mean_i >= mean_j else active[j]
                keep[drop] = False

        self.keep_ = keep
        return self

    def transform(self, X):
        check_is_fitted(self, "keep_")
        X = np.asarray(X, dtype=float)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, expected {self.n_features_in_}"
            )
        return X[:, self.keep_]

    def get_feature_names_out(self, input_features=None):
        check_is_fitted(self, "keep_")
        if input_features is None:
            input_features = [f"x{i}" for i in range(self.n_features_in_)]
        return np.asarray(input_features, dtype=object)[self.keep_]


def build_preprocessor(
    scale: bool,
    correlation_threshold: float = 0.9,
    random_state: int = 42,
) -> Pipeline:
    """Build the transform chain for one family.

    Parameters
    ----------
    scale : bool
        Append standardization and a Yeo-Johnson power transform (SVM, MLP).
    correlation_threshold : float
        Threshold handed to ``CorrelationFilter``.
    random_state : int
        Seed for the auxiliary imputation model.
    """
    steps = [
        (
            "impute",
            IterativeImputer(
                estimator=BaggingRegressor(n_estimators=10, random_state=random_state),
                skip_complete=True,
                random_state=random_state,
            ),
        ),
        ("zero_variance", VarianceThreshold(threshold=0.0)),
        ("correlation", CorrelationFilter(threshold=correlation_threshold)),
    ]
    if scale:
        steps.append(("normalize", StandardScaler()))
        steps.append(("yeo_johnson", PowerTransformer(method="yeo-johnson")))
    return Pipeline(steps)


def n_output_features(preprocessor: Pipeline, X) -> int:
    """Number of predictor columns left after fitting ``preprocessor`` on ``X``."""
    return clone(preprocessor).fit_transform(X).shape[1]
