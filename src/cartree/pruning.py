"""
cartree.pruning
===============

Cost-complexity (weakest-link) pruning.

For a complexity parameter ``cp`` the cost of a tree ``T`` is::

    R(T) + cp * R(root) * |leaves(T)|

where ``R`` is the sum of squared deviations.  Collapsing an internal node
``t`` into a leaf is worth it once ``cp * R(root)`` reaches

    g(t) = (R(t) - R(T_t)) / (|leaves(T_t)| - 1)

Repeatedly collapsing the node with the smallest ``g`` gives a nested
sequence of subtrees, each optimal on an interval of ``cp``.
:func:`cost_complexity_path` returns that sequence and :func:`prune` /
:func:`prune_to_splits` pick a member of it.  Trees are never modified.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from loguru import logger

from .tree import Tree

# ties in g closer than this (relative to the root deviance) collapse together
_TIE_TOL = 1e-10


@dataclass(frozen=True)
class PruneStep:
    """One member of the nested pruning sequence.

    Attributes
    ----------
    alpha : float
        Smallest absolute penalty at which this subtree is cost-optimal.
    cp : float
        ``alpha`` relative to the root deviance.
    collapsed : tuple of int
        Nodes turned into leaves by this step (empty for the first step).
    n_splits : int
        Splits left once this step is applied.
    deviance : float
        Sum of leaf deviances of the subtree.
    """

    alpha: float
    cp: float
    collapsed: Tuple[int, ...]
    n_splits: int
    deviance: float

    @property
    def n_leaves(self) -> int:
        return self.n_splits + 1


def cost_complexity_path(tree: Tree) -> List[PruneStep]:
    """Weakest-link sequence from ``tree`` itself down to the root alone.

    The first step is the unpruned tree (``alpha=0``); thresholds are
    strictly increasing along the list.
    """
    root_dev = tree.root_deviance
    internal: Set[int] = {nd.node_id for nd in tree.traverse() if not nd.is_leaf}
    steps = [PruneStep(0.0, 0.0, (), len(internal), tree.deviance)]
    tol = _TIE_TOL * max(root_dev, 1e-300)

    while internal:
        leaf_dev, leaf_count = _subtree_totals(tree, internal)
        g = {
            nid: (tree[nid].deviance - leaf_dev[nid]) / (leaf_count[nid] - 1)
            for nid in internal
        }
        g_min = min(g.values())
        weakest = {nid for nid, val in g.items() if val <= g_min + tol}
        # keep only the topmost nodes of the tied set
        top = tuple(sorted(nid for nid in weakest if not _has_ancestor_in(nid, weakest)))
        for nid in top:
            internal -= {nd.node_id for nd in tree.traverse(nid) if not nd.is_leaf}
        deviance = _pruned_deviance(tree, internal)

        prev = steps[-1]
        if len(steps) > 1 and g_min <= prev.alpha + tol:
            # not a new level: fold into the previous step
            steps[-1] = PruneStep(prev.alpha, prev.cp, prev.collapsed + top, len(internal), deviance)
        else:
            alpha = max(g_min, 0.0)
            steps.append(PruneStep(alpha, alpha / root_dev if root_dev > 0 else 0.0, top, len(internal), deviance))
        logger.debug("Collapsed {} at alpha={:.6g} ({} splits left)", list(top), g_min, len(internal))
    return steps


def prune(tree: Tree, cp: float, path: Optional[List[PruneStep]] = None) -> Tree:
    """Smallest-cost subtree for complexity parameter ``cp``.

    Every weakest-link step whose threshold is at most ``cp * R(root)`` is
    applied, so a collapse that leaves the cost unchanged is taken.
    ``cp=math.inf`` prunes down to the root.  ``path`` may be passed to reuse
    a sequence already computed for ``tree``.
    """
    if cp < 0:
        raise ValueError("cp must be non-negative")
    path = path if path is not None else cost_complexity_path(tree)
    if math.isinf(cp):
        collapse = [nid for step in path for nid in step.collapsed]
    else:
        limit = cp * tree.root_deviance
        collapse = [nid for step in path[1:] if step.alpha <= limit for nid in step.collapsed]
    if not collapse:
        return tree
    return tree.subtree(collapse)


def prune_to_splits(tree: Tree, n_splits: int, path: Optional[List[PruneStep]] = None) -> Tree:
    """Largest subtree in the pruning sequence with at most ``n_splits`` splits."""
    path = path if path is not None else cost_complexity_path(tree)
    collapse: List[int] = []
    for step in path:
        collapse.extend(step.collapsed)
        if step.n_splits <= n_splits:
            break
    if not collapse:
        return tree
    return tree.subtree(collapse)


def _subtree_totals(tree: Tree, internal: Set[int]) -> Tuple[Dict[int, float], Dict[int, int]]:
    """Leaf deviance sum and leaf count below each node of the current subtree."""
    leaf_dev: Dict[int, float] = {}
    leaf_count: Dict[int, int] = {}

    def visit(nid: int) -> Tuple[float, int]:
        node = tree[nid]
        if nid not in internal:
            return node.deviance, 1
        ld, lc = visit(node.left_id)
        rd, rc = visit(node.right_id)
        leaf_dev[nid] = ld + rd
        leaf_count[nid] = lc + rc
        return leaf_dev[nid], leaf_count[nid]

    visit(1)
    return leaf_dev, leaf_count


def _pruned_deviance(tree: Tree, internal: Set[int]) -> float:
    if 1 not in internal:
        return tree.root_deviance
    leaf_dev, _ = _subtree_totals(tree, internal)
    return leaf_dev[1]


def _has_ancestor_in(nid: int, ids: Set[int]) -> bool:
    nid //= 2
    while nid >= 1:
        if nid in ids:
            return True
        nid //= 2
    return False
