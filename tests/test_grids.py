import os
import sys
import json
import logging

import pytest

# Add parent directory to path to import from src
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.selection.grids import DEFAULT_GRIDS, expand_grid, expand_grids, load_grids
from src.pipeline.selection.imputation_methods import list_methods


def test_expand_grid_product_size():
    rows = expand_grid({'donors': [1, 4, 7], 'ridge': [1e-3, 1e-4]})
    assert len(rows) == 6, "Grid size should be the product of candidate list lengths"
    assert all(set(r) == {'donors', 'ridge'} for r in rows)


def test_expand_grid_last_parameter_varies_fastest():
    rows = expand_grid({'a': [1, 2], 'b': ['x', 'y']})
    assert rows == [
        {'a': 1, 'b': 'x'}, {'a': 1, 'b': 'y'},
        {'a': 2, 'b': 'x'}, {'a': 2, 'b': 'y'},
    ]


def test_expand_grid_zero_parameters_single_configuration():
    assert expand_grid({}) == [{}], "A method without parameters has exactly one configuration"


def test_expand_grid_empty_candidates():
    with pytest.raises(ValueError) as exc_info:
        expand_grid({'k': []})
    assert "k" in str(exc_info.value)


def test_default_grids_sizes():
    configurations = expand_grids(DEFAULT_GRIDS)
    assert len(configurations['mice_pmm']) == 54, "donors x ridge x matchtype"
    assert len(configurations['mice_midastouch']) == 6
    assert len(configurations['knn']) == 20
    assert len(configurations['pca']) == 29 * 10
    assert len(configurations['mean_imp']) == 1
    assert set(DEFAULT_GRIDS) <= set(list_methods()), "Every default grid must name a registered method"


def test_load_grids_wraps_scalars(tmp_path, caplog):
    path = tmp_path / "grids.json"
    path.write_text(json.dumps({'knn': {'k': 3}, 'mean_imp': {}}))
    with caplog.at_level(logging.INFO):
        grids = load_grids(path, known_methods=list_methods())
    assert grids == {'knn': {'k': [3]}, 'mean_imp': {}}
    assert "Loaded grids for 2 methods" in caplog.text


def test_load_grids_unknown_method(tmp_path):
    path = tmp_path / "grids.json"
    path.write_text(json.dumps({'bogus': {'k': [1]}}))
    with pytest.raises(ValueError) as exc_info:
        load_grids(path, known_methods=list_methods())
    assert "bogus" in str(exc_info.value)


def test_load_grids_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_grids(tmp_path / "absent.json")
