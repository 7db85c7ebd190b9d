"""Hyperparameter grids for imputation methods."""

import json
import logging
from itertools import product
from pathlib import Path

logger = logging.getLogger(__name__)

RIDGE_VALUES = [1e-03, 1e-04, 1e-05, 1e-06, 1e-07, 1e-08]

# Candidate values per method; expanded into configuration rows by expand_grid
DEFAULT_GRIDS = {
    'mice_pmm': {'donors': [1, 4, 7], 'ridge': RIDGE_VALUES, 'matchtype': [0, 1, 2]},
    'mice_norm_predict': {},
    'mice_norm': {},
    'mice_rf': {'n_estimators': [i * 2 + 1 for i in range(11)]},
    'mice_midastouch': {'ridge': RIDGE_VALUES},
    'knn': {'k': list(range(1, 21))},
    'pca': {'n_components': list(range(2, 31)), 'max_steps': [i * 20 for i in range(1, 11)]},
    'missingness_indicators': {},
    'max_imp': {},
    'min_imp': {},
    'mean_imp': {},
    'median_imp': {},
    'zero_imp': {},
    'outlier_imp': {},
}


def expand_grid(parameters):
    """
    Expand candidate value lists into configuration rows.

    The cartesian product follows the insertion order of ``parameters`` with the
    last parameter varying fastest, so configuration index ``i`` always denotes
    the same combination for the same input lists.

    Parameters:
    -----------
    parameters : dict
        Mapping of parameter name -> ordered list of candidate values

    Returns:
    --------
    list : List of dicts, one per configuration. An empty mapping yields [{}].
    """
    names = list(parameters.keys())
    values = []
    for name in names:
        candidates = list(parameters[name])
        if len(candidates) == 0:
            raise ValueError(f"Parameter '{name}' has no candidate values")
        values.append(candidates)
    return [dict(zip(names, combo)) for combo in product(*values)]


def expand_grids(grids):
    """Expand every method's grid, preserving method order."""
    return {method: expand_grid(parameters) for method, parameters in grids.items()}


def load_grids(config_path, known_methods=None):
    """
    Load per-method parameter grids from a JSON file.

    Example JSON structure:
    {
        "knn": {"k": [1, 2, 3]},
        "mean_imp": {}
    }

    Scalar candidates are wrapped into one-element lists.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Grid file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw = json.load(f)

    return normalize_grids(raw, known_methods=known_methods)


def normalize_grids(raw, known_methods=None):
    grids = {}
    for method, parameters in raw.items():
        if known_methods is not None and method not in known_methods:
            raise ValueError(f"Unknown imputation method in grid: {method}")
        if parameters is None:
            parameters = {}
        grids[method] = {
            name: value if isinstance(value, list) else [value]
            for name, value in parameters.items()
        }
    logger.info(f"Loaded grids for {len(grids)} methods: {list(grids)}")
    return grids
