import os
import sys
import logging

import numpy as np
import pandas as pd
import pytest

# Add parent directory to path to import from src
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.selection.errors import MethodExhausted
from src.pipeline.selection.imputation_methods import Completion
from src.pipeline.selection.selector import (
    aggregate_configurations,
    performance_signal,
    select_best,
    select_index,
)
from src.pipeline.selection.training import TrainedModel

OUTCOME = np.array([0, 1, 0, 1])


def rf_tree(errors):
    """Model tree for one method from a list of per-configuration OOB error lists."""
    return {
        c: {r: (TrainedModel('rf', model=None, oob_error=e) if e is not None else None) for r, e in enumerate(row)}
        for c, row in enumerate(errors)
    }


def completion_tree(errors):
    frame = pd.DataFrame({'a': [0.0, 1.0, 2.0, 3.0]})
    return {c: {r: Completion(frame, estimate=f'estimate-{c}') for r in range(len(row))}
            for c, row in enumerate(errors)}


def configurations(errors):
    return [{'k': c + 1} for c in range(len(errors))]


def test_selects_lowest_oob_error():
    errors = [[0.40, 0.40], [0.35, 0.35], [0.38, 0.38]]
    selection = select_best({'knn': rf_tree(errors)}, {'knn': completion_tree(errors)},
                            {'knn': configurations(errors)}, OUTCOME)
    result = selection['knn']
    assert result.index == 1
    assert result.hyperparameters == {'k': 2}
    assert result.score == pytest.approx(0.35)
    assert result.estimate == 'estimate-1', "Estimate comes from the winning configuration"
    assert len(result.models) == 2


def test_ties_resolve_to_lowest_index():
    assert select_index({0: 0.3, 1: 0.2, 2: 0.2}, maximize=False) == 1
    assert select_index({0: 0.7, 1: 0.7}, maximize=True) == 0


def test_partial_failure_kept_in_mean():
    errors = [[None, 0.30], [0.35, 0.35]]
    selection = select_best({'knn': rf_tree(errors)}, {'knn': completion_tree(errors)},
                            {'knn': configurations(errors)}, OUTCOME)
    assert selection['knn'].index == 0, "Null realizations are left out of the mean"
    assert selection['knn'].models[0] is None


def test_all_null_configuration_gets_sentinel():
    signals = {0: {0: None, 1: None}, 1: {0: 0.5, 1: 0.7}}
    assert aggregate_configurations(signals, maximize=False) == {0: np.inf, 1: pytest.approx(0.6)}
    assert aggregate_configurations(signals, maximize=True)[0] == -np.inf


def test_exhausted_method_dropped(caplog):
    errors = [[None, None], [None, None]]
    models = {'pca': rf_tree(errors), 'mean_imp': rf_tree([[0.2]])}
    completions = {'pca': completion_tree(errors), 'mean_imp': completion_tree([[0.2]])}
    grids = {'pca': configurations(errors), 'mean_imp': [{}]}
    with caplog.at_level(logging.WARNING):
        with pytest.warns(MethodExhausted):
            selection = select_best(models, completions, grids, OUTCOME)
    assert 'pca' not in selection
    assert 'mean_imp' in selection
    assert "pca" in caplog.text


def test_logistic_signal_is_maximized():
    good = TrainedModel('lr', model=None, fitted_proba=np.array([0.1, 0.9, 0.2, 0.8]))
    bad = TrainedModel('lr', model=None, fitted_proba=np.array([0.9, 0.1, 0.8, 0.2]))
    assert performance_signal(good, OUTCOME) == pytest.approx(1.0)
    assert performance_signal(bad, OUTCOME) == pytest.approx(-1.0)

    models = {'knn': {0: {0: bad}, 1: {0: good}}}
    completions = {'knn': completion_tree([[None], [None]])}
    selection = select_best(models, completions, {'knn': [{'k': 1}, {'k': 2}]}, OUTCOME)
    assert selection['knn'].index == 1


def test_explicit_direction_overrides_family_default():
    errors = [[0.40], [0.35]]
    selection = select_best({'knn': rf_tree(errors)}, {'knn': completion_tree(errors)},
                            {'knn': configurations(errors)}, OUTCOME, maximize={'knn': True})
    assert selection['knn'].index == 0
