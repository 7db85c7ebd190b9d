import os
import sys
import logging

import numpy as np
import pandas as pd
import pytest
from numpy.random import default_rng

# Add parent directory to path to import from src
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.selection.preprocessing import find_correlated, near_zero_variance, select_features


@pytest.fixture
def features():
    rng = default_rng(5)
    n = 200
    a = rng.normal(size=n)
    rare = np.zeros(n)
    rare[0] = 1.0
    df = pd.DataFrame({
        'a': a,
        'b': 2 * a + rng.normal(scale=0.01, size=n),
        'c': rng.normal(size=n),
        'constant': np.ones(n),
        'rare': rare,
    })
    df.loc[::7, 'c'] = np.nan
    return df


def test_near_zero_variance_flags(features):
    nzv = near_zero_variance(features)
    assert nzv.loc['constant', 'nzv']
    assert nzv.loc['rare', 'nzv'], "199:1 split over 1% distinct values is near-zero variance"
    assert not nzv.loc['a', 'nzv']
    assert not nzv.loc['c', 'nzv']


def test_find_correlated_drops_one_of_pair(features):
    removed = find_correlated(features[['a', 'b', 'c']], cutoff=0.9)
    assert len(removed) == 1
    assert removed[0] in {'a', 'b'}


def test_find_correlated_nothing_above_cutoff(features):
    assert find_correlated(features[['a', 'c']], cutoff=0.9) == []


def test_select_features_logs(features, caplog):
    with caplog.at_level(logging.INFO):
        kept = select_features(features)
    assert 'constant' not in kept and 'rare' not in kept
    assert 'c' in kept
    assert len({'a', 'b'} & set(kept)) == 1
    assert "near-zero-variance" in caplog.text
