import os
import sys
from unittest.mock import patch

import numpy as np
import pytest

# Add parent directory to path to import from src
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.selection.errors import DegenerateMetric, StructuralMismatch
from src.pipeline.selection import performance
from src.pipeline.selection.performance import (
    KEY_COLUMNS,
    METRICS,
    confusion_counts,
    leaf_metrics,
    score,
    summarize,
)

OUTCOME = np.array([0, 0, 1, 1, 1, 0])


@pytest.fixture
def predictions():
    perfect = np.array([0.1, 0.2, 0.9, 0.8, 0.7, 0.3])
    noisy = np.array([0.6, 0.2, 0.9, 0.4, 0.7, 0.3])
    return {
        'knn': {0: {0: perfect, 1: noisy}, 1: {0: noisy, 1: None}},
        'mean_imp': {0: {0: perfect}},
    }


def test_confusion_counts_sum_to_cases():
    proba = np.array([0.6, 0.2, 0.9, 0.4, 0.7, 0.3])
    counts = confusion_counts(proba, OUTCOME)
    assert sum(counts.values()) == len(OUTCOME)
    assert counts == {'tp': 2, 'fp': 1, 'tn': 2, 'fn': 1}


def test_threshold_is_strict():
    counts = confusion_counts(np.array([0.5, 0.5]), np.array([0, 1]))
    assert counts['tp'] == 0 and counts['fn'] == 1, "A probability of exactly 0.5 is a negative call"


def test_single_class_outcome_raises():
    with pytest.raises(DegenerateMetric):
        leaf_metrics(np.array([0.2, 0.7]), np.array([1, 1]))
    with pytest.raises(DegenerateMetric):
        score({'knn': {0: {0: np.array([0.2, 0.7])}}}, np.array([0, 0]))


def test_length_mismatch_raises():
    with pytest.raises(ValueError):
        confusion_counts(np.array([0.2, 0.7, 0.1]), np.array([0, 1]))


def test_leaf_metrics_perfect_prediction():
    metrics = leaf_metrics(np.array([0.1, 0.2, 0.9, 0.8, 0.7, 0.3]), OUTCOME)
    assert metrics['mcc'] == pytest.approx(1.0)
    assert metrics['auc'] == pytest.approx(1.0)
    assert metrics['sensitivity'] == metrics['recall'] == 1.0
    assert metrics['specificity'] == 1.0


def test_score_merges_metric_tables(predictions):
    table = score(predictions, OUTCOME)
    assert len(table) == 5, "One row per prediction leaf"
    assert list(table.columns) == list(KEY_COLUMNS) + list(METRICS)
    failed = table[(table['method'] == 'knn') & (table['model_index'] == 1) & (table['realization'] == 1)]
    assert failed[list(METRICS)].isna().to_numpy().all(), "Failed predictions become NaN rows"
    perfect = table[table['method'] == 'mean_imp']
    assert perfect['mcc'].iloc[0] == pytest.approx(1.0)


def test_summarize_groupings(predictions):
    table = score(predictions, OUTCOME, metrics=['mcc', 'auc'])
    summaries = summarize(table)
    assert set(summaries) == {
        'model_mean', 'model_sd', 'over_test_mean', 'over_test_sd', 'over_train_mean', 'over_train_sd'
    }
    model_mean = summaries['model_mean'].set_index('method')
    assert model_mean.loc['mean_imp', 'mcc'] == pytest.approx(1.0)
    assert len(summaries['over_test_mean']) == 3


def test_score_diverging_metric_tables(predictions):
    real_flatten = performance.flatten

    def flatten_dropping_auc_row(tree, **kwargs):
        table = real_flatten(tree, **kwargs)
        return table.iloc[:-1] if kwargs.get('value_name') == 'auc' else table

    with patch.object(performance, 'flatten', side_effect=flatten_dropping_auc_row):
        with pytest.raises(StructuralMismatch) as exc_info:
            score(predictions, OUTCOME, metrics=['mcc', 'auc'])
    assert "do not share the same keys" in str(exc_info.value)
