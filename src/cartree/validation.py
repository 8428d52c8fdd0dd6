"""
cartree.validation
==================

Cross-validated choice of the pruning level.

:func:`cross_validate` turns the pruning sequence of a full tree into a
complexity table: one :class:`ComplexityTableRow` per subtree, smallest
first, with its resubstitution error and its cross-validated error, both
relative to the root sum of squares.  :func:`select_one_se` applies the
one-standard-error rule and :func:`fit_pruned_tree` runs the whole pipeline.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from loguru import logger

from .builder import build_tree, resolve_config
from .config import TreeConfig
from .dataset import Dataset
from .exceptions import DegenerateTreeError, InsufficientDataError
from .pruning import cost_complexity_path, prune, prune_to_splits
from .tree import Tree


@dataclass(frozen=True)
class ComplexityTableRow:
    """One pruning level of the complexity table.

    Attributes
    ----------
    cp : float
        Smallest relative complexity at which this subtree is cost-optimal.
    n_splits : int
        Number of splits of the subtree.
    rel_error : float
        Resubstitution error relative to the root sum of squares.
    xerror : float
        Cross-validated error relative to the root sum of squares.
    xstd : float
        Standard error of ``xerror`` across folds.
    """

    cp: float
    n_splits: int
    rel_error: float
    xerror: float
    xstd: float


@dataclass
class PruningResult:
    full_tree: Tree
    table: List[ComplexityTableRow]
    selected: ComplexityTableRow
    tree: Tree


def assign_folds(n: int, folds: int, rng: np.random.Generator) -> np.ndarray:
    """Fold number of each of ``n`` records from a seeded permutation.

    Fold sizes differ by at most one.
    """
    fold_of = np.empty(n, dtype=int)
    fold_of[rng.permutation(n)] = np.arange(n) % folds
    return fold_of


def cross_validate(full_tree: Tree, ds: Dataset, config: Optional[TreeConfig] = None,
                   cp_values: Optional[Sequence[float]] = None,
                   rng: Optional[np.random.Generator] = None) -> List[ComplexityTableRow]:
    """Complexity table of ``full_tree`` with cross-validated errors.

    Parameters
    ----------
    full_tree : Tree
        Tree grown on ``ds`` by :func:`~cartree.builder.build_tree`.
    ds : Dataset
        The records ``full_tree`` was grown on.
    config : TreeConfig, optional
        Parameters used to grow each fold's tree.
    cp_values : sequence of float, optional
        Explicit complexity values, one row each.  By default there is one
        row per member of the pruning sequence of ``full_tree``.
    rng : numpy.random.Generator, optional
        Source of the fold assignment.  Defaults to
        ``np.random.default_rng(config.seed)``.

    Returns
    -------
    list of ComplexityTableRow
        Ordered from the smallest tree to the largest.

    Raises
    ------
    DegenerateTreeError
        ``full_tree`` has no split.
    InsufficientDataError
        A fold would hold fewer than ``min_leaf_size`` records.
    """
    config = config or TreeConfig()
    n = len(ds)
    if full_tree.n_splits == 0:
        raise DegenerateTreeError("The full tree has no split; there is nothing to prune")
    if n // config.folds < config.min_leaf_size:
        raise InsufficientDataError(
            f"{n} records cannot fill {config.folds} folds of at least {config.min_leaf_size}",
            n_records=n,
            required=config.folds * config.min_leaf_size,
        )

    root_dev = float(np.sum((ds.y - ds.y.mean()) ** 2))
    levels = _levels(full_tree, config, cp_values)
    eval_cps = [cp_eval for _, _, cp_eval, _ in levels]

    rng = rng if rng is not None else np.random.default_rng(config.seed)
    fold_of = assign_folds(n, config.folds, rng)
    logger.info("Cross-validating {} pruning levels over {} folds", len(levels), config.folds)

    results: List[Tuple[np.ndarray, int]] = Parallel(n_jobs=config.n_jobs, backend="threading")(
        delayed(_fold_errors)(ds, fold_of, f, config, eval_cps) for f in range(config.folds)
    )

    sse = np.vstack([errs for errs, _ in results])           # (folds, levels)
    n_test = np.array([size for _, size in results], dtype=float)
    xerror = sse.sum(axis=0) / root_dev
    fold_rel = (sse / n_test[:, None]) / (root_dev / n)
    xstd = fold_rel.std(axis=0, ddof=1) / math.sqrt(config.folds)

    return [
        ComplexityTableRow(
            cp=cp,
            n_splits=splits,
            rel_error=dev / root_dev,
            xerror=float(xerror[j]),
            xstd=float(xstd[j]),
        )
        for j, (cp, splits, _, dev) in enumerate(levels)
    ]


def _levels(full_tree: Tree, config: TreeConfig,
            cp_values: Optional[Sequence[float]]) -> List[Tuple[float, int, float, float]]:
    """``(cp, n_splits, evaluation cp, deviance)`` per row, smallest tree first."""
    if cp_values is not None:
        out = []
        for cp in sorted((float(c) for c in cp_values), reverse=True):
            if cp < 0:
                raise ValueError("cp values must be non-negative")
            pruned = prune(full_tree, cp)
            out.append((cp, pruned.n_splits, cp, pruned.deviance))
        return out

    path = cost_complexity_path(full_tree)
    steps = list(reversed(path))  # root first
    out = []
    for k, step in enumerate(steps):
        if k == len(steps) - 1:
            # the full tree itself: report the cp it was grown with
            cp = min(config.max_cp, steps[k - 1].cp)
        else:
            cp = step.cp
        upper = steps[k - 1].cp if k > 0 else math.inf
        cp_eval = math.inf if math.isinf(upper) else math.sqrt(cp * upper)
        out.append((cp, step.n_splits, cp_eval, step.deviance))
    return out


def _fold_errors(ds: Dataset, fold_of: np.ndarray, fold: int, config: TreeConfig,
                 eval_cps: Sequence[float]) -> Tuple[np.ndarray, int]:
    """Held-out squared error of one fold at every evaluation cp."""
    train = ds.subset(np.nonzero(fold_of != fold)[0])
    test = ds.subset(np.nonzero(fold_of == fold)[0])
    tree = build_tree(train, config)
    path = cost_complexity_path(tree)
    errs = np.empty(len(eval_cps), dtype=float)
    for j, cp in enumerate(eval_cps):
        pred = prune(tree, cp, path=path).predict_dataset(test)
        errs[j] = float(np.sum((test.y - pred) ** 2))
    logger.debug("Fold {}: {} held out, tree with {} splits", fold, len(test), tree.n_splits)
    return errs, len(test)


def select_one_se(rows: Sequence[ComplexityTableRow]) -> ComplexityTableRow:
    """Smallest tree whose ``xerror`` is within one ``xstd`` of the minimum.

    The standard error used is that of the first row attaining the minimum.
    """
    if not rows:
        raise ValueError("The complexity table is empty")
    best = min(rows, key=lambda r: r.xerror)  # first row reaching the minimum
    limit = best.xerror + best.xstd
    return min((r for r in rows if r.xerror <= limit), key=lambda r: r.n_splits)


def fit_pruned_tree(ds: Dataset, config: Optional[TreeConfig] = None,
                    rng: Optional[np.random.Generator] = None, **params: Any) -> PruningResult:
    """Grow, cross-validate and prune with the 1-SE rule.

    Keyword arguments override fields of ``config``.
    """
    config = resolve_config(config, params)
    full_tree = build_tree(ds, config)
    table = cross_validate(full_tree, ds, config, rng=rng)
    selected = select_one_se(table)
    tree = prune_to_splits(full_tree, selected.n_splits)
    logger.info(
        "Selected {} of {} splits (cp={:.6g}, xerror={:.4f} +/- {:.4f})",
        selected.n_splits, full_tree.n_splits, selected.cp, selected.xerror, selected.xstd,
    )
    return PruningResult(full_tree=full_tree, table=table, selected=selected, tree=tree)


def complexity_frame(rows: Sequence[ComplexityTableRow]) -> pd.DataFrame:
    """The complexity table as a DataFrame indexed from 1."""
    df = pd.DataFrame(
        [(r.cp, r.n_splits, r.rel_error, r.xerror, r.xstd) for r in rows],
        columns=["CP", "nsplit", "rel error", "xerror", "xstd"],
    )
    df.index = range(1, len(df) + 1)
    return df


def format_cp_table(rows: Sequence[ComplexityTableRow], digits: int = 5) -> str:
    """Printable complexity table, one line per row, smallest tree first."""
    return complexity_frame(rows).to_string(float_format=lambda v: f"{v:.{digits}g}")
