"""
cartree.builder
===============

Recursive partitioning of a :class:`~cartree.dataset.Dataset` into a
regression tree.

Growth stops at a node when it owns fewer than ``minsplit`` records, its
targets are all equal, it sits at ``max_depth``, its deviance is already
below ``max_cp * R(root)`` (nothing grown below it could survive the
complexity filter), or no split leaves ``min_leaf_size`` records on both
sides.  The grown tree is then pruned at ``cp = max_cp``; that is the tree
returned, and the one cross-validation works on.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
from loguru import logger

from .config import TreeConfig
from .dataset import Dataset, _readonly
from .exceptions import InsufficientDataError
from .pruning import prune
from .splitting import find_best_split, find_surrogates, route_missing
from .tree import Node, Tree


def resolve_config(config: Optional[TreeConfig], params: Dict[str, Any]) -> TreeConfig:
    if config is None:
        return TreeConfig.build(**params)
    if params:
        return config.replace(**params)
    return config


def build_tree(ds: Dataset, config: Optional[TreeConfig] = None, **params: Any) -> Tree:
    """Grow a regression tree on ``ds`` and apply the ``max_cp`` filter.

    Parameters
    ----------
    ds : Dataset
        Training records (missing targets already dropped).
    config : TreeConfig, optional
        Fitting parameters; keyword arguments override its fields, e.g.
        ``build_tree(ds, minsplit=15, max_cp=0.01)``.

    Returns
    -------
    Tree

    Raises
    ------
    InsufficientDataError
        The dataset is empty.
    InvalidConfigError
        A parameter is out of range.
    """
    config = resolve_config(config, params)
    tree = grow_tree(ds, config)
    if config.max_cp > 0 and tree.n_splits > 0:
        grown = tree.n_splits
        tree = prune(tree, config.max_cp)
        logger.debug("Complexity filter cp={} kept {} of {} splits", config.max_cp, tree.n_splits, grown)
    logger.info("Built tree on {} records: {} splits, {} leaves", len(ds), tree.n_splits, tree.n_leaves)
    return tree


def grow_tree(ds: Dataset, config: TreeConfig) -> Tree:
    """Grow without any complexity pruning."""
    if len(ds) == 0:
        raise InsufficientDataError("Cannot grow a tree on an empty dataset", n_records=0, required=1)
    nodes: Dict[int, Node] = {}
    y = ds.y
    root_dev = float(np.sum((y - y.mean()) ** 2))
    _grow(ds, np.arange(len(ds)), 1, 0, config, config.max_cp * root_dev, nodes)
    return Tree(nodes, ds.schema, ds.target, config.missing_policy)


def _grow(ds: Dataset, idx: np.ndarray, node_id: int, depth: int,
          config: TreeConfig, dev_floor: float, nodes: Dict[int, Node]) -> None:
    idx = _readonly(idx)
    y = ds.y[idx]
    n = int(idx.shape[0])
    mean = float(y.mean())
    dev = float(np.sum((y - mean) ** 2))
    node = Node(node_id=node_id, indices=idx, n=n, value=mean, deviance=dev, depth=depth)

    reason = None
    if n < config.minsplit:
        reason = "minsplit"
    elif np.all(y == y[0]):
        reason = "constant target"
    elif depth >= config.max_depth:
        reason = "max_depth"
    elif dev <= dev_floor:
        reason = "below complexity floor"
    if reason is not None:
        nodes[node_id] = node
        logger.debug("Node {} (n={}) is a leaf: {}", node_id, n, reason)
        return

    cand = find_best_split(
        ds, idx,
        min_leaf_size=config.min_leaf_size,
        max_categories_exhaustive=config.max_categories_exhaustive,
    )
    if cand is None:
        nodes[node_id] = node
        logger.debug("Node {} (n={}) is a leaf: no valid split", node_id, n)
        return

    surrogates = []
    if config.missing_policy == "surrogate":
        surrogates = find_surrogates(ds, idx, cand.rule, max_surrogates=config.max_surrogates)
    majority_left = cand.left.shape[0] >= cand.right.shape[0]

    left: List[int] = cand.left.tolist()
    right: List[int] = cand.right.tolist()
    excluded = 0
    for i in cand.missing.tolist():
        d, _ = route_missing(surrogates, majority_left, lambda name, i=i: ds.value(name, i), config.missing_policy)
        if d is None:
            excluded += 1
        elif d:
            left.append(i)
        else:
            right.append(i)

    nodes[node_id] = Node(
        node_id=node_id, indices=idx, n=n, value=mean, deviance=dev, depth=depth,
        split=cand.rule,
        improvement=cand.improvement,
        surrogates=tuple(surrogates),
        majority_left=majority_left,
        n_excluded=excluded,
    )
    logger.debug("Node {} (n={}) split on {} improve={:.6g}", node_id, n, cand.rule.describe(), cand.improvement)
    _grow(ds, np.sort(np.asarray(left, dtype=int)), 2 * node_id, depth + 1, config, dev_floor, nodes)
    _grow(ds, np.sort(np.asarray(right, dtype=int)), 2 * node_id + 1, depth + 1, config, dev_floor, nodes)
