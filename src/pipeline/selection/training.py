"""Classifier training on completed datasets."""

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from sklearn.ensemble import RandomForestClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler

from src.pipeline.selection.errors import ConvergenceFailure

logger = logging.getLogger(__name__)

# Candidate features per split (8k - 1 for k = 1..5)
RF_MAX_FEATURES = [7, 15, 23, 31, 39]

TRAINING_ERRORS = (ConvergenceFailure, ValueError, np.linalg.LinAlgError)


@dataclass
class TrainedModel:
    """A fitted classifier with the signals used for model selection."""

    family: str
    model: Any
    oob_error: Optional[float] = None
    fitted_proba: Optional[np.ndarray] = None
    params: Optional[dict] = None

    def predict_proba(self, data):
        """Probability of the positive class for each row."""
        return self.model.predict_proba(data)[:, 1]


class RandomForestTrainer:
    """Random forest tuned over ``max_features`` by out-of-bag error."""

    family = 'rf'

    def __init__(self, n_estimators=500, max_features=None):
        self.n_estimators = n_estimators
        self.max_features = max_features or RF_MAX_FEATURES

    def fit(self, data, outcome, seed):
        n_features = data.shape[1]
        candidates = sorted({min(m, n_features) for m in self.max_features})
        best = None
        for max_features in candidates:
            model = make_pipeline(
                StandardScaler(),
                RandomForestClassifier(
                    n_estimators=self.n_estimators,
                    max_features=max_features,
                    oob_score=True,
                    random_state=seed,
                    n_jobs=1,
                ),
            )
            with warnings.catch_warnings():
                # Too few trees for some rows to be out-of-bag is reported, not fatal
                warnings.simplefilter("ignore", UserWarning)
                model.fit(data, outcome)
            oob_error = 1.0 - model[-1].oob_score_
            # Strict comparison keeps the smallest max_features on ties
            if best is None or oob_error < best.oob_error:
                best = TrainedModel(self.family, model, oob_error=oob_error,
                                    params={'max_features': max_features})
        return best


class LogisticTrainer:
    """Logistic regression on standardised features, fit directly without tuning."""

    family = 'lr'

    def __init__(self, max_iter=1000):
        self.max_iter = max_iter

    def fit(self, data, outcome, seed):
        model = make_pipeline(
            StandardScaler(),
            LogisticRegression(max_iter=self.max_iter, random_state=seed),
        )
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            try:
                model.fit(data, outcome)
            except ConvergenceWarning as e:
                raise ConvergenceFailure(str(e)) from e
        fitted_proba = model.predict_proba(data)[:, 1]
        return TrainedModel(self.family, model, fitted_proba=fitted_proba)


CLASSIFIER_REGISTRY = {
    'rf': RandomForestTrainer,
    'lr': LogisticTrainer,
}


def build_trainer(name, **kwargs):
    if name not in CLASSIFIER_REGISTRY:
        raise KeyError(f"Unknown classifier '{name}'. Available: {sorted(CLASSIFIER_REGISTRY)}")
    return CLASSIFIER_REGISTRY[name](**kwargs)


def fit_leaf(trainer, data, outcome, seed, label=''):
    """Fit one classifier; a failed fit yields None instead of aborting the batch."""
    if data is None:
        return None
    try:
        return trainer.fit(data, outcome, seed)
    except TRAINING_ERRORS as e:
        logger.warning(f"{trainer.family} fit failed for {label}: {e}")
        return None
