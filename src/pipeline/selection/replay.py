"""Replay phase: impute held-out data with persisted state and predict."""

import logging

import numpy as np

from src.pipeline.selection.imputation_methods import build_imputation_method
from src.pipeline.selection.workers import derive_seed, impute_unit, run_units

logger = logging.getLogger(__name__)


def _restrict_features(state, new_data):
    features = state['final_features']
    missing = [c for c in features if c not in new_data.columns]
    if missing:
        raise ValueError(f"New data lacks final training features: {missing}")
    return new_data[features]


def replay_completions(state, new_data, seed=42, n_jobs=1, max_iter=5):
    """
    Re-impute new data with every persisted method.

    Each method is rebuilt with its persisted hyperparameters and as many
    realizations as it has persisted models. Methods that need training-set
    state are handed the stored estimate; nothing is re-estimated from the new
    data for them.

    Returns:
    --------
    dict : method -> list of Completions
    """
    data = _restrict_features(state, new_data)
    units = []
    for method, hyperparameters in state['hyperparameters'].items():
        adapter = build_imputation_method(method, n_imputations=len(state['models'][method]), max_iter=max_iter)
        estimate = state['estimates'].get(method)
        if adapter.needs_estimate and estimate is None:
            raise ValueError(f"Method {method} cannot be replayed without its training-set estimate")
        index = state.get('indices', {}).get(method, 0)
        units.append((adapter, index, hyperparameters, data, estimate, derive_seed(seed, method, index, 2)))

    results = run_units(impute_unit, units, n_jobs=n_jobs, desc="Replay imputation")
    return {method: completions for method, _, completions in results}


def _predict(model, completion, label):
    if model is None or completion is None or completion.failed:
        logger.warning(f"No prediction for {label}: missing model or completion")
        return None
    try:
        return np.asarray(model.predict_proba(completion.data), dtype=float)
    except ValueError as e:
        logger.warning(f"Prediction failed for {label}: {e}")
        return None


def replay(state, new_data, seed=42, n_jobs=1, max_iter=5):
    """
    Predict held-out data with the persisted selection.

    Parameters:
    -----------
    state : dict
        Output of persist(): final_features, hyperparameters, estimates, models
    new_data : DataFrame
        Held-out data disjoint from the training data

    Returns:
    --------
    dict : Prediction tree method -> model index -> realization -> probabilities
    """
    completions = replay_completions(state, new_data, seed=seed, n_jobs=n_jobs, max_iter=max_iter)
    predictions = {}
    for method, models in state['models'].items():
        predictions[method] = {
            i: {
                r: _predict(model, completion, f"{method}:{i}:{r}")
                for r, completion in enumerate(completions[method])
            }
            for i, model in enumerate(models)
        }
    return predictions
