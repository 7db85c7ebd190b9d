"""Per-method model selection over imputation configurations."""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from sklearn.metrics import matthews_corrcoef

from src.pipeline.selection.errors import MethodExhausted
from src.pipeline.selection.tree import map_leaves

logger = logging.getLogger(__name__)

THRESHOLD = 0.5

# Out-of-bag error is minimised, MCC on fitted probabilities is maximised
DEFAULT_MAXIMIZE = {'rf': False, 'lr': True}


@dataclass
class SelectionResult:
    """Winning configuration of one imputation method."""

    method: str
    index: int
    hyperparameters: dict
    models: list
    estimate: Any = None
    score: Optional[float] = None
    aggregates: list = field(default_factory=list)


def performance_signal(model, outcome):
    """Scalar selection signal of one trained model; None for a failed fit."""
    if model is None:
        return None
    if model.family == 'rf':
        return float(model.oob_error)
    if model.family == 'lr':
        predicted = (model.fitted_proba > THRESHOLD).astype(int)
        return float(matthews_corrcoef(np.asarray(outcome).astype(int), predicted))
    raise ValueError(f"No performance signal defined for classifier family '{model.family}'")


def sentinel(maximize):
    """Worst possible aggregate in the configured direction."""
    return -np.inf if maximize else np.inf


def aggregate_configurations(signals, maximize):
    """
    Mean signal per configuration of one method.

    Null realizations are left out of the mean; a configuration whose
    realizations are all null gets the sentinel value.

    Parameters:
    -----------
    signals : dict
        configuration index -> {realization index -> float or None}
    maximize : bool
        Direction of the signal

    Returns:
    --------
    dict : configuration index -> aggregate
    """
    aggregates = {}
    for config, realizations in signals.items():
        values = [v for v in realizations.values() if v is not None and not np.isnan(v)]
        aggregates[config] = float(np.mean(values)) if values else sentinel(maximize)
    return aggregates


def select_index(aggregates, maximize):
    """Best configuration index; ties resolve to the lowest index. None if all are sentinels."""
    configs = sorted(aggregates)
    values = np.array([aggregates[c] for c in configs], dtype=float)
    if np.all(values == sentinel(maximize)):
        return None
    position = int(np.argmax(values) if maximize else np.argmin(values))
    return configs[position]


def _first_estimate(completions):
    for completion in completions.values():
        if completion is not None and not completion.failed:
            return completion.estimate
    return None


def select_best(models, completions, configurations, outcome, maximize=None):
    """
    Select the winning configuration of every method.

    Parameters:
    -----------
    models : dict
        Model tree: method -> configuration -> realization -> TrainedModel or None
    completions : dict
        Completion tree with the same shape as ``models``
    configurations : dict
        method -> list of hyperparameter rows (index = configuration index)
    outcome : array-like
        Training outcome, used for signals computed from fitted probabilities
    maximize : bool or dict, optional
        Direction per method; defaults from the classifier family

    Returns:
    --------
    dict : method -> SelectionResult, exhausted methods left out
    """
    signals = map_leaves(models, lambda m: performance_signal(m, outcome),
                         is_leaf=lambda m: hasattr(m, 'family'))
    selection = {}
    for method, method_signals in signals.items():
        direction = _direction(maximize, method, models[method])
        aggregates = aggregate_configurations(method_signals, direction)
        best = select_index(aggregates, direction)
        if best is None:
            message = f"Imputation method {method} did not produce any usable model; dropping it"
            logger.warning(message)
            warnings.warn(message, MethodExhausted)
            continue
        selection[method] = SelectionResult(
            method=method,
            index=best,
            hyperparameters=dict(configurations[method][best]),
            models=list(models[method][best].values()),
            estimate=_first_estimate(completions[method][best]),
            score=aggregates[best],
            aggregates=[aggregates[c] for c in sorted(aggregates)],
        )
        logger.info(f"{method}: configuration {best} {selection[method].hyperparameters} "
                    f"selected with score {aggregates[best]:.4f}")
    return selection


def _direction(maximize, method, method_models):
    if isinstance(maximize, dict):
        if method in maximize:
            return bool(maximize[method])
    elif maximize is not None:
        return bool(maximize)
    for realizations in method_models.values():
        for model in realizations.values():
            if model is not None:
                return DEFAULT_MAXIMIZE[model.family]
    return False
