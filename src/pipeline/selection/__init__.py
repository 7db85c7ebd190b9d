"""Hyperparameter selection for missing value imputation (MVI) methods.

This package trains classifiers on every completion produced by every
configuration of every imputation method, selects the best configuration per
method and replays the selection on held-out data.

Basic Usage
-----------
>>> from src.pipeline.selection import train, persist, replay, score
>>>
>>> selection = train(train_df, train_y, grids={'knn': {'k': [1, 2, 3]}}, classifier='rf')
>>> state = persist(selection, final_features=list(train_df.columns))
>>> predictions = replay(state, test_df)
>>> table = score(predictions, test_y)

Modules
-------
grids : Hyperparameter grids and their expansion into configurations
imputation_methods : Imputation method adapters and registry
tree : Traversal over nested experiment trees
training : Classifier training per completion
selector : Per-method configuration selection
experiment : Train phase orchestration and persistence
replay : Held-out imputation and prediction
performance : Held-out metrics and the performance table
preprocessing : Near-zero-variance and correlation filters
"""

from .errors import ConvergenceFailure, DegenerateMetric, MethodExhausted, StructuralMismatch
from .grids import DEFAULT_GRIDS, expand_grid, expand_grids, load_grids
from .imputation_methods import (
    Completion,
    ImputationMethod,
    KNNImputation,
    MICEImputation,
    MissingnessIndicators,
    PCAImputation,
    SingleValueImputation,
    build_imputation_method,
    list_methods,
)
from .tree import check_same_shape, flatten, map_branches, map_leaves
from .training import LogisticTrainer, RandomForestTrainer, TrainedModel
from .selector import SelectionResult, select_best
from .experiment import SelectionStudy, persist, train
from .replay import replay
from .performance import score, summarize
from .preprocessing import select_features

__version__ = '1.0.0'

__all__ = [
    # Errors
    'ConvergenceFailure',
    'DegenerateMetric',
    'MethodExhausted',
    'StructuralMismatch',

    # Grids
    'DEFAULT_GRIDS',
    'expand_grid',
    'expand_grids',
    'load_grids',

    # Imputation methods
    'Completion',
    'ImputationMethod',
    'KNNImputation',
    'MICEImputation',
    'MissingnessIndicators',
    'PCAImputation',
    'SingleValueImputation',
    'build_imputation_method',
    'list_methods',

    # Trees
    'check_same_shape',
    'flatten',
    'map_branches',
    'map_leaves',

    # Training and selection
    'LogisticTrainer',
    'RandomForestTrainer',
    'TrainedModel',
    'SelectionResult',
    'select_best',
    'SelectionStudy',
    'train',
    'persist',

    # Replay and evaluation
    'replay',
    'score',
    'summarize',
    'select_features',
]
