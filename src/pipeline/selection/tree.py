"""Generic traversal over nested experiment trees.

Experiment trees are nested dicts of uniform depth keyed by
method -> configuration -> realization. Parallel trees (completions, models,
predictions, scores) share key paths, so one path addresses one cell in all
of them. ``None`` marks a failed leaf.
"""

from collections.abc import Mapping

import pandas as pd

from src.pipeline.selection.errors import StructuralMismatch

DEPTH = 3
PATH_SEPARATOR = ':'


def _format_path(path):
    return PATH_SEPARATOR.join(str(p) for p in path)


def iter_leaves(tree, depth=DEPTH, _path=()):
    """Yield (path, leaf) pairs depth-first in insertion order."""
    if not isinstance(tree, Mapping):
        raise StructuralMismatch(f"Expected nesting at '{_format_path(_path)}', found {type(tree).__name__}")
    for key, value in tree.items():
        path = _path + (key,)
        if len(path) == depth:
            yield path, value
        else:
            yield from iter_leaves(value, depth, path)


def map_leaves(tree, fn, is_leaf, with_path=False, skip_none=True, depth=DEPTH, _path=()):
    """
    Apply ``fn`` to every leaf and return a tree of the same shape.

    Parameters:
    -----------
    tree : dict
        Nested mapping of uniform depth
    fn : callable
        fn(leaf) or, when with_path is set, fn(leaf, path) where path is the
        tuple of keys from the root to the leaf
    is_leaf : callable
        Predicate deciding leaf-hood at the declared depth. A value that fails
        it raises StructuralMismatch instead of being recursed into.
    skip_none : bool
        Pass failed (None) leaves through without calling fn

    Returns:
    --------
    dict : Tree with the same key paths holding the transformed leaves
    """
    if not isinstance(tree, Mapping):
        raise StructuralMismatch(f"Expected nesting at '{_format_path(_path)}', found {type(tree).__name__}")
    result = {}
    for key, value in tree.items():
        path = _path + (key,)
        if len(path) < depth:
            result[key] = map_leaves(value, fn, is_leaf, with_path, skip_none, depth, path)
            continue
        if value is None and skip_none:
            result[key] = None
            continue
        if value is not None and not is_leaf(value):
            raise StructuralMismatch(
                f"Value at '{_format_path(path)}' is not a leaf: {type(value).__name__}"
            )
        result[key] = fn(value, path) if with_path else fn(value)
    return result


def map_branches(tree, fn, is_branch):
    """Apply ``fn`` to the first value on each branch satisfying ``is_branch``, without recursing into it."""
    if is_branch(tree):
        return fn(tree)
    if isinstance(tree, Mapping):
        return {key: map_branches(value, fn, is_branch) for key, value in tree.items()}
    return tree


def tree_paths(tree, depth=DEPTH):
    """Parallel tree whose leaves are the key paths of ``tree``."""
    return map_leaves(tree, lambda value, path: list(path), lambda value: True,
                      with_path=True, skip_none=False, depth=depth)


def check_same_shape(tree, other, depth=DEPTH):
    """Raise StructuralMismatch unless both trees have identical key paths."""
    paths = [p for p, _ in iter_leaves(tree, depth)]
    other_paths = [p for p, _ in iter_leaves(other, depth)]
    if set(paths) == set(other_paths):
        return
    missing = [p for p in paths if p not in set(other_paths)]
    extra = [p for p in other_paths if p not in set(paths)]
    raise StructuralMismatch(
        f"Trees diverge: {len(missing)} paths missing (e.g. {[_format_path(p) for p in missing[:3]]}), "
        f"{len(extra)} unexpected (e.g. {[_format_path(p) for p in extra[:3]]})"
    )


def flatten(tree, path_tree=None, columns=('method', 'model_index', 'realization'), value_name='value'):
    """
    Zip a value tree with its path tree into one row per leaf.

    Path-tree leaves may be key sequences or composite keys joined with ':'.
    """
    depth = len(columns)
    if path_tree is None:
        path_tree = tree_paths(tree, depth=depth)
    check_same_shape(tree, path_tree, depth=depth)

    names_by_path = dict(iter_leaves(path_tree, depth))
    rows = []
    for path, value in iter_leaves(tree, depth):
        names = names_by_path[path]
        if isinstance(names, str):
            names = names.split(PATH_SEPARATOR)
        if len(names) != depth:
            raise StructuralMismatch(f"Path {names} does not have {depth} levels")
        row = dict(zip(columns, names))
        row[value_name] = value
        rows.append(row)
    return pd.DataFrame(rows, columns=list(columns) + [value_name])
