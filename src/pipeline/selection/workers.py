"""Worker pool units for imputation and training.

Every unit is a module-level function over picklable arguments and returns its
own key, so results are reassembled by (method, configuration, realization)
regardless of the order in which workers finish.
"""

import logging
import os
import time
import zlib
from multiprocessing import Pool

import numpy as np
from numpy.random import default_rng
from tqdm import tqdm

from src.pipeline.selection.imputation_methods import IMPUTATION_ERRORS, Completion
from src.pipeline.selection.training import fit_leaf

logger = logging.getLogger(__name__)


def derive_seed(global_seed, method, config_index, *extra):
    """Seed sequence of one unit of work, independent of scheduling order."""
    return np.random.SeedSequence([int(global_seed), zlib.crc32(str(method).encode()), int(config_index), *extra])


def default_n_jobs():
    """Worker count from SLURM_CPUS_PER_TASK or NUM_PROCESSES, else at most 4 cores."""
    return int(os.environ.get('SLURM_CPUS_PER_TASK', os.environ.get('NUM_PROCESSES', min(os.cpu_count() or 4, 4))))


def run_units(fn, units, n_jobs=1, desc=None):
    """Run independent units, in-process for n_jobs=1, else on a fixed-size pool."""
    if n_jobs is None:
        n_jobs = default_n_jobs()
    if n_jobs <= 1 or len(units) <= 1:
        return [fn(unit) for unit in tqdm(units, desc=desc, leave=False)]
    with Pool(processes=min(n_jobs, len(units))) as pool:
        return list(tqdm(pool.imap(fn, units), total=len(units), desc=desc, leave=False))


def impute_unit(args):
    """Impute one (method, configuration); a failure yields null completions."""
    method, config_index, params, data, estimate, seed_seq = args
    rng = default_rng(seed_seq)
    start = time.perf_counter()
    try:
        completions = method.impute(data, params, estimate=estimate, rng=rng)
    except IMPUTATION_ERRORS as e:
        logger.warning(f"Imputation {method.name} failed for configuration {config_index} {params}: {e}")
        completions = [Completion(None) for _ in range(method.n_realizations)]
    seconds = time.perf_counter() - start
    for completion in completions:
        completion.seconds = seconds
    return method.name, config_index, completions


def train_unit(args):
    """Fit one classifier on one completion leaf."""
    path, trainer, data, outcome, seed = args
    label = ':'.join(str(p) for p in path)
    return path, fit_leaf(trainer, data, outcome, seed, label=label)
