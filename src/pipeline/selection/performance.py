"""Performance of replayed predictions on held-out data.

This module thresholds predicted probabilities, scores every leaf of a
prediction tree and flattens the per-metric trees into one table keyed by
method, model index and realization.
"""

from functools import reduce

import numpy as np
import pandas as pd
from sklearn.metrics import (
    f1_score,
    matthews_corrcoef,
    precision_score,
    recall_score,
    roc_auc_score,
)

from src.pipeline.selection.errors import DegenerateMetric, StructuralMismatch
from src.pipeline.selection.tree import flatten, map_leaves

THRESHOLD = 0.5
KEY_COLUMNS = ('method', 'model_index', 'realization')

# ============================================================================
# LEAF METRICS
# ============================================================================

def classify(proba, threshold=THRESHOLD):
    """Class decision (1 = positive) for each predicted probability."""
    return (np.asarray(proba, dtype=float) > threshold).astype(int)


def _validate(proba, outcome):
    outcome = np.asarray(outcome).astype(int)
    proba = np.asarray(proba, dtype=float)
    if proba.shape[0] != outcome.shape[0]:
        raise ValueError(f"Got {proba.shape[0]} predictions for {outcome.shape[0]} outcomes")
    if len(np.unique(outcome)) < 2:
        raise DegenerateMetric("Outcome vector contains a single class; metrics are undefined")
    return proba, outcome


def confusion_counts(proba, outcome):
    """
    Confusion matrix entries at the 0.5 threshold.

    Returns:
    --------
    dict : Counts for 'tp', 'fp', 'tn', 'fn'; they sum to the number of cases
    """
    proba, outcome = _validate(proba, outcome)
    predicted = classify(proba)
    return {
        'tp': int(np.sum((predicted == 1) & (outcome == 1))),
        'fp': int(np.sum((predicted == 1) & (outcome == 0))),
        'tn': int(np.sum((predicted == 0) & (outcome == 0))),
        'fn': int(np.sum((predicted == 0) & (outcome == 1))),
    }


def mcc(proba, outcome):
    proba, outcome = _validate(proba, outcome)
    return float(matthews_corrcoef(outcome, classify(proba)))


def auc(proba, outcome):
    proba, outcome = _validate(proba, outcome)
    return float(roc_auc_score(outcome, proba))


def sensitivity(proba, outcome):
    proba, outcome = _validate(proba, outcome)
    return float(recall_score(outcome, classify(proba), pos_label=1, zero_division=0))


def specificity(proba, outcome):
    proba, outcome = _validate(proba, outcome)
    return float(recall_score(outcome, classify(proba), pos_label=0, zero_division=0))


def f1(proba, outcome):
    proba, outcome = _validate(proba, outcome)
    return float(f1_score(outcome, classify(proba), zero_division=0))


def precision(proba, outcome):
    proba, outcome = _validate(proba, outcome)
    return float(precision_score(outcome, classify(proba), zero_division=0))


METRICS = {
    'mcc': mcc,
    'auc': auc,
    'sensitivity': sensitivity,
    'specificity': specificity,
    'f1': f1,
    'precision': precision,
    'recall': sensitivity,
}


def leaf_metrics(proba, outcome):
    """All metrics for one prediction vector."""
    return {name: fn(proba, outcome) for name, fn in METRICS.items()}

# ============================================================================
# TREE SCORING
# ============================================================================

def _is_prediction(value):
    return isinstance(value, (np.ndarray, pd.Series, list))


def metric_tree(predictions, metric, outcome):
    """Tree of one metric's values, None where the prediction failed."""
    fn = METRICS[metric]
    return map_leaves(predictions, lambda proba: fn(proba, outcome), is_leaf=_is_prediction)


def score(predictions, outcome, metrics=None):
    """
    Score a prediction tree against the held-out outcome.

    Parameters:
    -----------
    predictions : dict
        method -> model index -> realization -> predicted probabilities
    outcome : array-like
        Binary outcome aligned with the predicted rows; must contain both classes
    metrics : list, optional
        Subset of METRICS to compute

    Returns:
    --------
    DataFrame : One row per leaf, key columns plus one column per metric
    """
    outcome = np.asarray(outcome).astype(int)
    if len(np.unique(outcome)) < 2:
        raise DegenerateMetric("Outcome vector contains a single class; metrics are undefined")

    metrics = list(metrics or METRICS)
    tables = []
    for metric in metrics:
        tree = metric_tree(predictions, metric, outcome)
        table = flatten(tree, columns=KEY_COLUMNS, value_name=metric)
        table[metric] = table[metric].astype(float)
        tables.append(table)
    merged = reduce(lambda left, right: pd.merge(left, right, on=list(KEY_COLUMNS), how='inner'), tables)
    if any(len(t) != len(merged) for t in tables):
        raise StructuralMismatch("Per-metric tables do not share the same keys")
    return merged


def summarize(table, metrics=None):
    """
    Mean and standard deviation of each metric over the performance table.

    Groupings follow the study's reporting: per method, per (method, model
    index) over held-out realizations and per (method, realization) over the
    persisted models.
    """
    metrics = [m for m in (metrics or METRICS) if m in table.columns]
    groupings = {
        'model': ['method'],
        'over_test': ['method', 'model_index'],
        'over_train': ['method', 'realization'],
    }
    summaries = {}
    for name, keys in groupings.items():
        grouped = table.groupby(keys, sort=False)[metrics]
        summaries[f'{name}_mean'] = grouped.mean().reset_index()
        summaries[f'{name}_sd'] = grouped.std().reset_index()
    return summaries
