"""Imputation method adapters for the selection framework.

Each adapter turns a dataset plus one configuration row into an ordered list of
completions. Methods whose fill values depend on the training data return an
estimate with each completion so that held-out data can be imputed later with
the training-set state only.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd
from numpy.random import default_rng
from scipy import linalg
from sklearn.ensemble import RandomForestRegressor
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.exceptions import ConvergenceWarning
from sklearn.impute import IterativeImputer, KNNImputer
from sklearn.linear_model import BayesianRidge

from src.pipeline.selection.errors import ConvergenceFailure

logger = logging.getLogger(__name__)

# Fill value for outlier imputation sits this many (range + 1) units above the maximum
OUTLIER_SCALE = 10

# Errors an adapter may raise for a single configuration or realization
IMPUTATION_ERRORS = (ConvergenceFailure, ValueError, np.linalg.LinAlgError)


@dataclass
class Completion:
    """One imputed dataset for a (method, configuration, realization) leaf."""

    data: Optional[pd.DataFrame]
    estimate: Any = None
    seconds: float = 0.0

    @property
    def failed(self):
        return self.data is None


def _check_complete(completed, method):
    if completed.isna().any().any():
        raise ConvergenceFailure(f"{method} left missing values in the completed dataset")
    return completed


class ImputationMethod(ABC):
    """Abstract base class for imputation methods.

    All imputation methods must implement:
    - impute(data, params, estimate=None, rng=None): Return list of Completions
    - name: Property for descriptive name
    """

    # Methods that cannot be replayed without training-set state
    needs_estimate = False

    @abstractmethod
    def impute(self, data, params, estimate=None, rng=None):
        pass

    @property
    @abstractmethod
    def name(self):
        pass

    @property
    def n_realizations(self):
        return 1


class MICEImputation(ImputationMethod):
    """Multiple imputation by chained equations.

    Produces ``n_imputations`` completed datasets per configuration, each from an
    independent generator spawned from the unit's generator. ``max_iter`` caps
    the number of chained rounds.
    """

    ESTIMATORS = ('pmm', 'norm', 'norm_predict', 'rf', 'midastouch')
    MATCHTYPES = (0, 1, 2)

    def __init__(self, estimator='norm', n_imputations=2, max_iter=5):
        if estimator not in self.ESTIMATORS:
            raise ValueError(f"Unknown MICE estimator '{estimator}'. Available: {list(self.ESTIMATORS)}")
        self.estimator = estimator
        self.n_imputations = n_imputations
        self.max_iter = max_iter

    @property
    def name(self):
        return f'mice_{self.estimator}'

    @property
    def n_realizations(self):
        return self.n_imputations

    def impute(self, data, params, estimate=None, rng=None):
        if rng is None:
            rng = default_rng(123)
        if int(params.get('matchtype', 1)) not in self.MATCHTYPES:
            raise ValueError(f"matchtype must be one of {list(self.MATCHTYPES)}, got {params['matchtype']}")
        completions = []
        for i, imputation_rng in enumerate(rng.spawn(self.n_imputations)):
            try:
                if self.estimator in ('pmm', 'midastouch'):
                    completed = self._impute_pmm(data, params, imputation_rng)
                else:
                    completed = self._impute_iterative(data, params, imputation_rng)
                completions.append(Completion(_check_complete(completed, self.name)))
            except IMPUTATION_ERRORS as e:
                logger.warning(f"{self.name} realization {i + 1} failed with {params}: {e}")
                completions.append(Completion(None))
        return completions

    def _impute_iterative(self, data, params, rng):
        seed = int(rng.integers(0, 2**32))
        if self.estimator == 'rf':
            estimator = RandomForestRegressor(n_estimators=int(params.get('n_estimators', 10)), random_state=seed)
        else:
            estimator = BayesianRidge()
        imp = IterativeImputer(
            estimator=estimator,
            max_iter=self.max_iter,
            sample_posterior=self.estimator == 'norm',
            random_state=seed,
            keep_empty_features=True,
        )
        with warnings.catch_warnings():
            # Unconverged chains are kept as draws
            warnings.simplefilter("ignore", ConvergenceWarning)
            values = imp.fit_transform(data)
        return pd.DataFrame(values, columns=data.columns, index=data.index)

    def _impute_pmm(self, data, params, rng):
        """Predictive mean matching; midastouch weights every donor by its distance instead."""
        donors = int(params.get('donors', 5))
        ridge = float(params.get('ridge', 1e-5))
        # midastouch matches drawn predictions on both sides
        matchtype = 2 if self.estimator == 'midastouch' else int(params.get('matchtype', 1))
        missing = data.isna()
        filled = data.astype(float).copy()
        means = filled.mean()
        filled = filled.fillna(means.fillna(0.0))

        counts = missing.sum()
        ordered_cols = sorted([c for c in data.columns if counts[c] > 0], key=lambda c: counts[c])
        for _ in range(self.max_iter):
            for col in ordered_cols:
                mask = missing[col].values
                if mask.all():
                    continue
                others = [c for c in data.columns if c != col]
                X_obs = filled.loc[~mask, others].values
                y_obs = filled.loc[~mask, col].values
                X_mis = filled.loc[mask, others].values
                yhat_obs, yhat_mis = _bayesian_ridge_draw(X_obs, y_obs, X_mis, ridge, rng, matchtype=matchtype)
                if self.estimator == 'midastouch':
                    filled.loc[mask, col] = _midastouch_match(yhat_obs, yhat_mis, y_obs, rng)
                else:
                    filled.loc[mask, col] = _pmm_match(yhat_obs, yhat_mis, y_obs, donors, rng)
        return filled


def _bayesian_ridge_draw(X_train, y_train, X_pred, ridge, rng, matchtype=1):
    """Draw regression parameters from their posterior (van Buuren 2018, algorithm 3.1).

    matchtype selects the parameters behind each side of the match:
    0 uses the point estimate for observed and missing rows, 1 the point
    estimate for observed and the draw for missing rows, 2 the draw for both.
    """
    n, p = X_train.shape
    X_train_aug = np.column_stack([np.ones(n), X_train])
    X_pred_aug = np.column_stack([np.ones(X_pred.shape[0]), X_pred])

    S = X_train_aug.T @ X_train_aug
    V = linalg.inv(S + np.diag(np.diag(S)) * ridge + np.eye(p + 1) * ridge)
    beta_hat = V @ X_train_aug.T @ y_train

    residuals = y_train - X_train_aug @ beta_hat
    df = max(n - p - 1, 1)
    sigma_dot = np.sqrt(np.sum(residuals ** 2) / rng.chisquare(df))

    V_sqrt = linalg.cholesky((V + V.T) / 2, lower=True)
    beta_dot = beta_hat + sigma_dot * V_sqrt @ rng.standard_normal(p + 1)
    beta_obs = beta_dot if matchtype == 2 else beta_hat
    beta_mis = beta_hat if matchtype == 0 else beta_dot
    return X_train_aug @ beta_obs, X_pred_aug @ beta_mis


def _pmm_match(yhat_obs, yhat_mis, y_obs, donors, rng):
    """Replace each missing prediction by the observed value of a random close donor."""
    d = min(donors, len(yhat_obs))
    y_imp = np.empty(len(yhat_mis))
    for j, target in enumerate(yhat_mis):
        pool = np.argsort(np.abs(yhat_obs - target), kind='stable')[:d]
        y_imp[j] = y_obs[rng.choice(pool)]
    return y_imp


def _midastouch_match(yhat_obs, yhat_mis, y_obs, rng):
    """Draw a donor for each missing prediction with probability falling off as distance ** -kappa.

    kappa grows with the fit's R^2 (Gaedke-Merzhaeuser and Siddique, 2016), so a
    good fit concentrates the draw on the closest donors and a poor one spreads it.
    """
    var_obs = np.var(y_obs)
    r2 = 0.0 if var_obs == 0 else min(max(1.0 - np.var(y_obs - yhat_obs) / var_obs, 0.0), 0.999)
    kappa = (50 * r2 / (1 + 1e-4 - r2)) ** (3 / 8)
    y_imp = np.empty(len(yhat_mis))
    for j, target in enumerate(yhat_mis):
        log_w = -kappa * np.log(np.maximum(np.abs(yhat_obs - target), 1e-12))
        w = np.exp(log_w - log_w.max())
        y_imp[j] = y_obs[rng.choice(len(y_obs), p=w / w.sum())]
    return y_imp


class PCAImputation(ImputationMethod):
    """Low-rank matrix completion by iterated truncated SVD.

    Deterministic: a single completion per configuration. Configurations asking
    for more components than the data's effective rank fail.
    """

    def __init__(self, tol=1e-6):
        self.tol = tol

    @property
    def name(self):
        return 'pca'

    def impute(self, data, params, estimate=None, rng=None):
        n_components = int(params.get('n_components', 2))
        max_steps = int(params.get('max_steps', 100))

        X = data.to_numpy(dtype=float)
        mask = np.isnan(X)
        with warnings.catch_warnings():
            # Columns without observations get a neutral centre and scale
            warnings.simplefilter("ignore", RuntimeWarning)
            mean = np.nanmean(X, axis=0)
            std = np.nanstd(X, axis=0)
        mean = np.where(np.isfinite(mean), mean, 0.0)
        std[~np.isfinite(std) | (std == 0)] = 1.0
        Z = (X - mean) / std
        Z[mask] = 0.0

        rank = np.linalg.matrix_rank(Z)
        if n_components > rank:
            raise ConvergenceFailure(f"n_components={n_components} exceeds effective rank {rank}")

        if mask.any():
            for _ in range(max_steps):
                U, s, Vt = linalg.svd(Z, full_matrices=False)
                approx = (U[:, :n_components] * s[:n_components]) @ Vt[:n_components]
                previous = Z[mask]
                Z[mask] = approx[mask]
                change = np.linalg.norm(Z[mask] - previous) / (np.linalg.norm(previous) + 1e-12)
                if change < self.tol:
                    break

        completed = pd.DataFrame(Z * std + mean, columns=data.columns, index=data.index)
        return [Completion(_check_complete(completed, self.name))]


class KNNImputation(ImputationMethod):
    """Nearest-neighbour imputation.

    At train time the neighbours come from the dataset itself; a row never
    donates to a cell it lacks. The completed training dataset is returned as
    the estimate and is the only donor pool when replaying on new data.
    """

    needs_estimate = True

    @property
    def name(self):
        return 'knn'

    def impute(self, data, params, estimate=None, rng=None):
        k = int(params.get('k', 5))
        imputer = KNNImputer(n_neighbors=k, keep_empty_features=True)
        if estimate is None:
            values = imputer.fit_transform(data)
            completed = pd.DataFrame(values, columns=data.columns, index=data.index)
            completed = _check_complete(completed, self.name)
            return [Completion(completed, estimate=completed)]

        reference = estimate[data.columns]
        imputer.fit(reference)
        values = imputer.transform(data)
        completed = pd.DataFrame(values, columns=data.columns, index=data.index)
        return [Completion(_check_complete(completed, self.name), estimate=estimate)]


def _outlier_constants(data):
    low, high = data.min(), data.max()
    return high + OUTLIER_SCALE * (high - low + 1)


SINGLE_VALUE_FILLS = {
    'min': lambda data: data.min(),
    'max': lambda data: data.max(),
    'mean': lambda data: data.mean(),
    'median': lambda data: data.median(),
    'zero': lambda data: pd.Series(0.0, index=data.columns),
    'outlier': _outlier_constants,
}


class SingleValueImputation(ImputationMethod):
    """Fill each feature with one constant computed on the training data.

    The per-feature constants are the estimate; replay applies them unchanged.
    """

    needs_estimate = True

    def __init__(self, kind='mean'):
        if kind not in SINGLE_VALUE_FILLS:
            raise ValueError(f"Unknown single-value kind '{kind}'. Available: {sorted(SINGLE_VALUE_FILLS)}")
        self.kind = kind

    @property
    def name(self):
        return f'{self.kind}_imp'

    def impute(self, data, params, estimate=None, rng=None):
        if estimate is None:
            values = SINGLE_VALUE_FILLS[self.kind](data.astype(float))
            empty = values.index[values.isna()]
            if len(empty) > 0:
                logger.warning(f"All values in {list(empty)} are NaN, filling with 0")
                values = values.fillna(0.0)
        else:
            values = pd.Series(estimate)
        completed = data.astype(float).fillna(values)
        return [Completion(_check_complete(completed, self.name), estimate=values)]


class MissingnessIndicators(ImputationMethod):
    """Append one 0/1 missingness indicator per feature.

    Indicators that are constant in training are dropped; the kept indicator
    names are the estimate and fix the indicator set for replay. Missing cells
    of the original features are set to zero.
    """

    needs_estimate = True
    suffix = '_missing'

    @property
    def name(self):
        return 'missingness_indicators'

    def impute(self, data, params, estimate=None, rng=None):
        indicators = data.isna().astype(int).add_suffix(self.suffix)
        if estimate is None:
            kept = [c for c in indicators.columns if indicators[c].nunique() > 1]
        else:
            kept = list(estimate)
        completed = pd.concat([data.astype(float).fillna(0.0), indicators[kept]], axis=1)
        return [Completion(completed, estimate=kept)]


METHOD_REGISTRY = {
    'mice_pmm': (MICEImputation, {'estimator': 'pmm'}),
    'mice_midastouch': (MICEImputation, {'estimator': 'midastouch'}),
    'mice_norm': (MICEImputation, {'estimator': 'norm'}),
    'mice_norm_predict': (MICEImputation, {'estimator': 'norm_predict'}),
    'mice_rf': (MICEImputation, {'estimator': 'rf'}),
    'pca': (PCAImputation, {}),
    'knn': (KNNImputation, {}),
    'missingness_indicators': (MissingnessIndicators, {}),
    'min_imp': (SingleValueImputation, {'kind': 'min'}),
    'max_imp': (SingleValueImputation, {'kind': 'max'}),
    'mean_imp': (SingleValueImputation, {'kind': 'mean'}),
    'median_imp': (SingleValueImputation, {'kind': 'median'}),
    'zero_imp': (SingleValueImputation, {'kind': 'zero'}),
    'outlier_imp': (SingleValueImputation, {'kind': 'outlier'}),
}


def list_methods():
    return sorted(METHOD_REGISTRY.keys())


def build_imputation_method(method, n_imputations=2, max_iter=5):
    """Build an imputation adapter by name."""
    if method not in METHOD_REGISTRY:
        raise KeyError(f"Unknown imputation method '{method}'. Available: {list_methods()}")
    cls, kwargs = METHOD_REGISTRY[method]
    if cls is MICEImputation:
        kwargs = dict(kwargs, n_imputations=n_imputations, max_iter=max_iter)
    return cls(**kwargs)


def build_imputation_methods(methods, n_imputations=2, max_iter=5):
    """Resolve every method name once, before any work is scheduled."""
    return {m: build_imputation_method(m, n_imputations=n_imputations, max_iter=max_iter) for m in methods}
