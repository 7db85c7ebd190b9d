import os
import sys

import numpy as np
import pandas as pd
import pytest

# Add parent directory to path to import from src
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.selection.errors import StructuralMismatch
from src.pipeline.selection.tree import check_same_shape, flatten, iter_leaves, map_branches, map_leaves, tree_paths


@pytest.fixture
def scores():
    """2 methods x 3 model indices x 2 realizations of floats."""
    return {
        method: {i: {r: float(10 * i + r) for r in range(2)} for i in range(3)}
        for method in ['knn', 'mean_imp']
    }


def _is_float(value):
    return isinstance(value, float)


def test_flatten_row_count(scores):
    table = flatten(scores, value_name='mcc')
    assert len(table) == 12, "One row per leaf"
    assert list(table.columns) == ['method', 'model_index', 'realization', 'mcc']
    row = table[(table['method'] == 'knn') & (table['model_index'] == 2) & (table['realization'] == 1)]
    assert row['mcc'].iloc[0] == 21.0


def test_flatten_with_string_paths(scores):
    paths = map_leaves(scores, lambda value, path: ':'.join(str(p) for p in path),
                       is_leaf=_is_float, with_path=True)
    table = flatten(scores, path_tree=paths)
    assert len(table) == 12
    assert set(table['method']) == {'knn', 'mean_imp'}


def test_map_leaves_preserves_shape_and_none(scores):
    scores['knn'][1][0] = None
    doubled = map_leaves(scores, lambda v: 2 * v, is_leaf=_is_float)
    assert doubled['knn'][1][0] is None, "Failed leaves pass through untouched"
    assert doubled['mean_imp'][2][1] == 42.0
    check_same_shape(doubled, scores)


def test_map_leaves_rejects_non_leaf(scores):
    scores['knn'][0][1] = {'unexpected': 1.0}
    with pytest.raises(StructuralMismatch) as exc_info:
        map_leaves(scores, lambda v: v, is_leaf=_is_float)
    assert "knn:0:1" in str(exc_info.value)


def test_map_leaves_rejects_shallow_branch(scores):
    scores['knn'][0] = 1.0
    with pytest.raises(StructuralMismatch):
        map_leaves(scores, lambda v: v, is_leaf=_is_float)


def test_check_same_shape_divergence(scores):
    other = {m: {i: dict(r) for i, r in c.items()} for m, c in scores.items()}
    del other['mean_imp'][2]
    with pytest.raises(StructuralMismatch) as exc_info:
        check_same_shape(scores, other)
    assert "2 paths missing" in str(exc_info.value)


def test_map_branches_joins_paths(scores):
    paths = tree_paths(scores)
    joined = map_branches(paths, lambda p: ':'.join(str(k) for k in p), is_branch=lambda v: isinstance(v, list))
    assert joined['knn'][2][1] == 'knn:2:1'
    assert [p for p, _ in iter_leaves(joined)] == [p for p, _ in iter_leaves(scores)]


def test_map_leaves_array_leaves():
    tree = {'knn': {0: {0: np.array([0.1, 0.9])}}}
    means = map_leaves(tree, lambda a: float(a.mean()), is_leaf=lambda v: isinstance(v, np.ndarray))
    assert means['knn'][0][0] == pytest.approx(0.5)
    assert isinstance(flatten(means), pd.DataFrame)
