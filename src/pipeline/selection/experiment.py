"""Train phase: impute every configuration, fit classifiers, select per method."""

import logging
import warnings

import numpy as np
import pandas as pd

from src.pipeline.selection.errors import MethodExhausted
from src.pipeline.selection.grids import DEFAULT_GRIDS, expand_grids
from src.pipeline.selection.imputation_methods import Completion, build_imputation_methods
from src.pipeline.selection.selector import select_best
from src.pipeline.selection.training import build_trainer
from src.pipeline.selection.tree import iter_leaves, map_leaves
from src.pipeline.selection.workers import derive_seed, impute_unit, run_units, train_unit

logger = logging.getLogger(__name__)


def _is_completion(value):
    return isinstance(value, Completion)


def validate_outcome(dataset, outcome):
    outcome = np.asarray(outcome)
    if outcome.shape[0] != dataset.shape[0]:
        raise ValueError(f"Outcome has {outcome.shape[0]} entries for {dataset.shape[0]} rows")
    values = set(np.unique(outcome).tolist())
    if not values <= {0, 1}:
        raise ValueError(f"Outcome must be coded 0/1, got values {sorted(values)}")
    if len(values) < 2:
        raise ValueError("Outcome contains a single class; classifiers cannot be trained")
    return outcome.astype(int)


def impute_all(dataset, configurations, methods, seed=42, n_jobs=1):
    """
    Impute the dataset under every configuration of every method.

    Parameters:
    -----------
    dataset : DataFrame
        Training features with missing values
    configurations : dict
        method -> list of hyperparameter rows
    methods : dict
        method -> ImputationMethod, resolved once before scheduling
    seed : int
        Global seed; each unit derives its own from (seed, method, configuration)

    Returns:
    --------
    dict : Completion tree method -> configuration -> realization -> Completion or None
    """
    units = [
        (methods[method], i, params, dataset, None, derive_seed(seed, method, i))
        for method, rows in configurations.items()
        for i, params in enumerate(rows)
    ]
    logger.info(f"Imputing {len(units)} configurations across {len(configurations)} methods")
    results = run_units(impute_unit, units, n_jobs=n_jobs, desc="Imputation")

    completions = {method: {} for method in configurations}
    for method, config_index, method_completions in results:
        completions[method][config_index] = {
            r: (c if not c.failed else None) for r, c in enumerate(method_completions)
        }
    for method in completions:
        completions[method] = dict(sorted(completions[method].items()))
    return completions


def drop_failed_methods(completions):
    """Remove methods that did not produce a single completed dataset."""
    kept = {}
    for method, configs in completions.items():
        if all(c is None for _, c in iter_leaves({method: configs})):
            message = f"Imputation method {method} did not successfully produce any datasets"
            logger.warning(message)
            warnings.warn(message, MethodExhausted)
            continue
        kept[method] = configs
    return kept


def train_all(completions, outcome, trainer, seed=42, n_jobs=1):
    """Fit one classifier per completion leaf; returns a model tree of the same shape."""
    units = [
        (path, trainer, completion.data if completion is not None else None, outcome,
         int(derive_seed(seed, path[0], path[1], path[2], 1).generate_state(1)[0]))
        for path, completion in iter_leaves(completions)
    ]
    logger.info(f"Training {len(units)} {trainer.family} classifiers")
    fitted = dict(run_units(train_unit, units, n_jobs=n_jobs, desc=f"Training {trainer.family}"))
    return map_leaves(completions, lambda value, path: fitted[path], is_leaf=_is_completion,
                      with_path=True, skip_none=False)


class SelectionStudy:
    """Train-phase orchestration for one classifier family.

    Keeps the intermediate trees (configurations, completions, models) so that
    callers can inspect timings and failures after ``fit``.
    """

    def __init__(self, grids=None, classifier='rf', maximize=None, seed=42, n_jobs=1,
                 n_imputations=2, max_iter=5, trainer_kwargs=None):
        self.grids = DEFAULT_GRIDS if grids is None else grids
        self.classifier = classifier
        self.maximize = maximize
        self.seed = seed
        self.n_jobs = n_jobs
        # Resolved once, before any unit of work is scheduled
        self.methods = build_imputation_methods(self.grids, n_imputations=n_imputations, max_iter=max_iter)
        self.trainer = build_trainer(classifier, **(trainer_kwargs or {}))
        self.configurations = expand_grids(self.grids)
        self.completions = None
        self.models = None
        self.selection = None

    def fit(self, dataset, outcome):
        outcome = validate_outcome(dataset, outcome)
        for method, rows in self.configurations.items():
            logger.info(f"{method}: {len(rows)} configurations")

        completions = impute_all(dataset, self.configurations, self.methods, seed=self.seed, n_jobs=self.n_jobs)
        self.completions = drop_failed_methods(completions)
        self.models = train_all(self.completions, outcome, self.trainer, seed=self.seed, n_jobs=self.n_jobs)
        self.selection = select_best(self.models, self.completions, self.configurations, outcome,
                                     maximize=self.maximize)
        return self.selection

    def timings(self):
        """Seconds spent per (method, configuration)."""
        rows = {}
        for (method, config, _), completion in iter_leaves(self.completions or {}):
            if completion is not None:
                rows[(method, config)] = completion.seconds
        return pd.DataFrame(
            [{'method': m, 'configuration': c, 'seconds': s} for (m, c), s in rows.items()],
            columns=['method', 'configuration', 'seconds'],
        )


def train(dataset, outcome, grids=None, maximize=None, classifier='rf', seed=42, n_jobs=1,
          n_imputations=2, max_iter=5, trainer_kwargs=None):
    """
    Select the best configuration of every imputation method for one classifier.

    Parameters:
    -----------
    dataset : DataFrame
        Feature-engineered training data (final feature set) with missing values
    outcome : array-like
        Binary outcome (1 = positive) aligned with the dataset rows
    grids : dict, optional
        method -> {parameter -> candidate values}; defaults to DEFAULT_GRIDS
    maximize : bool or dict, optional
        Selection direction, globally or per method
    classifier : str
        'rf' (tuned by out-of-bag error) or 'lr'

    Returns:
    --------
    dict : method -> SelectionResult
    """
    study = SelectionStudy(grids=grids, classifier=classifier, maximize=maximize, seed=seed, n_jobs=n_jobs,
                           n_imputations=n_imputations, max_iter=max_iter, trainer_kwargs=trainer_kwargs)
    return study.fit(dataset, outcome)


def persist(selection, final_features, classifier=None, n_imputations=None):
    """Plain serializable state crossing the train/replay boundary."""
    if classifier is None:
        families = {m.family for r in selection.values() for m in r.models if m is not None}
        classifier = families.pop() if len(families) == 1 else None
    return {
        'final_features': list(final_features),
        'classifier': classifier,
        'n_imputations': n_imputations,
        'indices': {m: int(r.index) for m, r in selection.items()},
        'hyperparameters': {m: dict(r.hyperparameters) for m, r in selection.items()},
        'estimates': {m: r.estimate for m, r in selection.items()},
        'models': {m: list(r.models) for m, r in selection.items()},
    }

