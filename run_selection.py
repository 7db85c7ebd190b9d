import os
import json
import logging
from pathlib import Path

import joblib
import pandas as pd

from src.pipeline.selection.experiment import SelectionStudy, persist
from src.pipeline.selection.grids import DEFAULT_GRIDS, normalize_grids
from src.pipeline.selection.imputation_methods import list_methods
from src.pipeline.selection.performance import score, summarize
from src.pipeline.selection.preprocessing import select_features
from src.pipeline.selection.replay import replay
from src.pipeline.selection.workers import default_n_jobs

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('selection.log.txt'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger()

REQUIRED_KEYS = ['train_data', 'train_outcome', 'test_data', 'test_outcome', 'seed']
DEFAULTS = {
    'grids': None,
    'classifiers': ['rf', 'lr'],
    'n_jobs': None,
    'n_imputations': 2,
    'max_iter': 5,
    'output_dir': 'results/selection',
}


def load_config(config_path):
    """
    Load selection configuration from a JSON file.

    Parameters:
    -----------
    config_path : str or Path
        Path to the JSON configuration file

    Returns:
    --------
    dict : Configuration dictionary with defaults filled in

    Example JSON structure:
    {
        "train_data": "data/train.csv",
        "train_outcome": "data/train_outcome.csv",
        "test_data": "data/test.csv",
        "test_outcome": "data/test_outcome.csv",
        "seed": 42,
        "grids": {"knn": {"k": [1, 2, 3]}, "mean_imp": {}},
        "classifiers": ["rf"],
        "n_jobs": 4
    }
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = json.load(f)

    # Validate required keys
    missing_keys = [key for key in REQUIRED_KEYS if key not in config]
    if missing_keys:
        raise ValueError(f"Missing required configuration keys: {missing_keys}")

    for key, value in DEFAULTS.items():
        config.setdefault(key, value)
    if not isinstance(config['classifiers'], list):
        config['classifiers'] = [config['classifiers']]
    if config['grids'] is not None:
        config['grids'] = normalize_grids(config['grids'], known_methods=list_methods())

    logger.info(f"Loaded configuration from {config_path}")
    return config


def read_outcome(path):
    """Outcome vector from the first column of a CSV file."""
    return pd.read_csv(path).iloc[:, 0].to_numpy()


def load_state(path):
    return joblib.load(path)


def run_selection(config_file=None, train_data=None, train_outcome=None, test_data=None, test_outcome=None,
                  grids=None, classifiers=('rf',), seed=42, n_jobs=None, n_imputations=2, max_iter=5,
                  output_dir='results/selection'):
    """
    Run the train and replay phases for every classifier.

    Parameters can be provided either via a JSON config file or directly as function arguments.
    If config_file is provided, it takes precedence over direct arguments.

    Parameters:
    -----------
    config_file : str or Path, optional
        Path to JSON configuration file
    train_data, test_data : DataFrame
        Training and held-out features with missing values
    train_outcome, test_outcome : array-like
        Binary outcomes aligned with the rows of the data
    grids : dict, optional
        method -> {parameter -> candidate values}; defaults to DEFAULT_GRIDS
    classifiers : sequence of str
        Classifier families to train ('rf', 'lr')
    n_jobs : int, optional
        Worker processes; defaults from SLURM_CPUS_PER_TASK or NUM_PROCESSES

    Returns:
    --------
    dict : classifier -> performance table
    """
    if config_file is not None:
        config = load_config(config_file)
        train_data = pd.read_csv(config['train_data'])
        train_outcome = read_outcome(config['train_outcome'])
        test_data = pd.read_csv(config['test_data'])
        test_outcome = read_outcome(config['test_outcome'])
        grids = config['grids']
        classifiers = config['classifiers']
        seed = config['seed']
        n_jobs = config['n_jobs']
        n_imputations = config['n_imputations']
        max_iter = config['max_iter']
        output_dir = config['output_dir']

    if train_data is None or test_data is None:
        raise ValueError("Both training and held-out data are required")
    grids = DEFAULT_GRIDS if grids is None else grids
    n_jobs = default_n_jobs() if n_jobs is None else n_jobs

    logger.info(f"Starting selection with seed={seed}, n_jobs={n_jobs}, classifiers={list(classifiers)}")
    final_features = select_features(train_data)
    logger.info(f"{len(final_features)} of {train_data.shape[1]} features kept for training")

    os.makedirs(output_dir, exist_ok=True)
    tables = {}
    for classifier in classifiers:
        study = SelectionStudy(grids=grids, classifier=classifier, seed=seed, n_jobs=n_jobs,
                               n_imputations=n_imputations, max_iter=max_iter)
        selection = study.fit(train_data[final_features], train_outcome)
        study.timings().to_csv(os.path.join(output_dir, f'timings_{classifier}.csv'), index=False)

        state = persist(selection, final_features, classifier=classifier, n_imputations=n_imputations)
        state_path = os.path.join(output_dir, f'state_{classifier}.joblib')
        joblib.dump(state, state_path)
        logger.info(f"Saved selection state to {state_path}")

        predictions = replay(state, test_data, seed=seed, n_jobs=n_jobs, max_iter=max_iter)
        table = score(predictions, test_outcome)
        table.to_csv(os.path.join(output_dir, f'performance_{classifier}.csv'), index=False)
        for name, summary in summarize(table).items():
            summary.to_csv(os.path.join(output_dir, f'{name}_{classifier}.csv'), index=False)
        logger.info(f"Saved performance tables for {classifier} to {output_dir}")
        tables[classifier] = table

    logger.info(f"Selection complete. Results saved in {output_dir}")
    return tables


if __name__ == "__main__":
    import sys
    tables = run_selection(config_file=sys.argv[1] if len(sys.argv) > 1 else 'selection_config.json')
