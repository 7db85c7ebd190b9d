"""Removal of features that some imputation methods cannot handle."""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def near_zero_variance(data, freq_cut=95 / 5, unique_cut=1):
    """
    Flag features with (near) zero variance.

    A feature is flagged when it has a single distinct value, or when the ratio
    of its most common to its second most common value exceeds ``freq_cut``
    and its distinct values make up at most ``unique_cut`` percent of rows.

    Returns:
    --------
    DataFrame : freq_ratio, percent_unique and nzv per feature
    """
    rows = {}
    for col in data.columns:
        counts = data[col].value_counts(dropna=True)
        if len(counts) <= 1:
            rows[col] = {'freq_ratio': np.inf, 'percent_unique': 100.0 * len(counts) / len(data), 'nzv': True}
            continue
        freq_ratio = counts.iloc[0] / counts.iloc[1]
        percent_unique = 100.0 * len(counts) / len(data)
        rows[col] = {
            'freq_ratio': float(freq_ratio),
            'percent_unique': float(percent_unique),
            'nzv': bool(freq_ratio > freq_cut and percent_unique <= unique_cut),
        }
    return pd.DataFrame.from_dict(rows, orient='index', columns=['freq_ratio', 'percent_unique', 'nzv'])


def find_correlated(data, cutoff=0.9):
    """
    Features to remove so that no remaining pair has |correlation| above ``cutoff``.

    Correlations use pairwise-complete observations; undefined correlations
    count as zero. Of each offending pair, the feature with the larger mean
    absolute correlation is removed.
    """
    corr = data.corr(min_periods=2).abs().fillna(0.0)
    values = corr.to_numpy(copy=True)
    np.fill_diagonal(values, 0.0)
    corr = pd.DataFrame(values, index=corr.index, columns=corr.columns)
    remaining = list(data.columns)
    removed = []
    while len(remaining) > 1:
        sub = corr.loc[remaining, remaining]
        values = sub.to_numpy()
        if values.max() <= cutoff:
            break
        i, j = np.unravel_index(np.argmax(values), values.shape)
        a, b = remaining[i], remaining[j]
        drop = a if sub[a].mean() > sub[b].mean() else b
        remaining.remove(drop)
        removed.append(drop)
    return removed


def select_features(data, freq_cut=95 / 5, unique_cut=1, cutoff=0.9):
    """Final feature list: training columns minus near-zero-variance and highly correlated features."""
    nzv = near_zero_variance(data, freq_cut=freq_cut, unique_cut=unique_cut)
    nzv_features = list(nzv.index[nzv['nzv']])
    if nzv_features:
        logger.info(f"Removing near-zero-variance features: {nzv_features}")
    kept = data.drop(columns=nzv_features)

    correlated = find_correlated(kept, cutoff=cutoff)
    if correlated:
        logger.info(f"Removing highly correlated features: {correlated}")
    return [c for c in kept.columns if c not in correlated]
