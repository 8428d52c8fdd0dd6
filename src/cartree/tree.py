"""
cartree.tree
============

The fitted regression tree.

A :class:`Tree` is an arena: a dict from node id to :class:`Node`, where the
root is ``1`` and the children of node ``i`` are ``2*i`` (left) and ``2*i+1``
(right).  Nodes are frozen; pruning builds a new ``Tree`` that shares the
surviving nodes and holds leaf copies of the collapsed ones.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .dataset import Dataset, FieldType
from .exceptions import MissingFieldError
from .splitting import SplitRule, SurrogateSplit, route_missing


# ----------------------------- Node -----------------------------

@dataclass(frozen=True)
class Node:
    node_id: int
    indices: np.ndarray = field(compare=False, repr=False)
    n: int
    value: float
    deviance: float
    depth: int
    split: Optional[SplitRule] = None
    improvement: float = 0.0
    surrogates: Tuple[SurrogateSplit, ...] = ()
    majority_left: bool = True
    n_excluded: int = 0  # records dropped from both children (missing_policy="none")

    @property
    def is_leaf(self) -> bool:
        return self.split is None

    @property
    def left_id(self) -> int:
        return 2 * self.node_id

    @property
    def right_id(self) -> int:
        return 2 * self.node_id + 1

    @property
    def parent_id(self) -> Optional[int]:
        return self.node_id // 2 if self.node_id > 1 else None

    def as_leaf(self) -> Node:
        if self.is_leaf:
            return self
        return replace(self, split=None, improvement=0.0, surrogates=(), majority_left=True, n_excluded=0)


# ----------------------------- Tree -----------------------------

Records = Union[Dataset, pd.DataFrame, Iterable[Mapping[str, Any]]]


class Tree:
    """A binary regression tree.

    Parameters
    ----------
    nodes : mapping of int to Node
        The arena.  Must contain the root (id 1) and, for every internal
        node, both of its children.
    schema : dict[str, {"numeric", "categorical"}]
        Fields the tree was grown on.
    target : str
        Name of the predicted field.
    missing_policy : {"surrogate", "majority", "none"}, default="surrogate"
        How :meth:`predict` routes a record missing a split field.
    """

    def __init__(self, nodes: Mapping[int, Node], schema: Mapping[str, FieldType], target: str,
                 missing_policy: str = "surrogate"):
        if 1 not in nodes:
            raise ValueError("A tree needs a root node with id 1")
        for node in nodes.values():
            if not node.is_leaf and (node.left_id not in nodes or node.right_id not in nodes):
                raise ValueError(f"Internal node {node.node_id} is missing a child")
        self.nodes: Dict[int, Node] = dict(nodes)
        self.schema: Dict[str, FieldType] = dict(schema)
        self.target = target
        self.missing_policy = missing_policy

    # ----------------------------- Structure -----------------------------

    @property
    def root(self) -> Node:
        return self.nodes[1]

    def __getitem__(self, node_id: int) -> Node:
        return self.nodes[node_id]

    def __contains__(self, node_id: int) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def children(self, node_id: int) -> Tuple[Node, ...]:
        node = self.nodes[node_id]
        if node.is_leaf:
            return ()
        return self.nodes[node.left_id], self.nodes[node.right_id]

    def traverse(self, node_id: int = 1) -> Iterator[Node]:
        """Nodes of the subtree rooted at ``node_id``, in pre-order (left first)."""
        stack = [node_id]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            if not node.is_leaf:
                stack.append(node.right_id)
                stack.append(node.left_id)

    def leaves(self, node_id: int = 1) -> List[Node]:
        return [nd for nd in self.traverse(node_id) if nd.is_leaf]

    @property
    def n_leaves(self) -> int:
        return len(self.leaves())

    @property
    def n_splits(self) -> int:
        return self.n_leaves - 1

    @property
    def depth(self) -> int:
        return max(nd.depth for nd in self.traverse())

    @property
    def root_deviance(self) -> float:
        return self.root.deviance

    @property
    def deviance(self) -> float:
        """Sum of leaf deviances (the resubstitution risk)."""
        return float(sum(nd.deviance for nd in self.leaves()))

    def subtree(self, collapse: Iterable[int]) -> Tree:
        """A new tree where every node in ``collapse`` becomes a leaf."""
        collapse = set(collapse)
        kept: Dict[int, Node] = {}
        stack = [1]
        while stack:
            node = self.nodes[stack.pop()]
            if node.node_id in collapse:
                kept[node.node_id] = node.as_leaf()
                continue
            kept[node.node_id] = node
            if not node.is_leaf:
                stack.extend((node.left_id, node.right_id))
        return Tree(kept, self.schema, self.target, self.missing_policy)

    def structure(self) -> Tuple[Tuple[int, Optional[SplitRule]], ...]:
        return tuple(sorted((nid, nd.split) for nid, nd in self.nodes.items()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tree):
            return NotImplemented
        return self.structure() == other.structure()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Tree(n={self.root.n}, splits={self.n_splits}, leaves={self.n_leaves}, depth={self.depth})"

    # ----------------------------- Prediction -----------------------------

    def decision_path(self, getter: Callable[[str], Any]) -> List[Tuple[Node, Optional[str]]]:
        """Nodes visited from the root to a leaf.

        Each entry is ``(node, how)`` where ``how`` says how the record left
        that node: ``"primary"``, ``"surrogate"``, ``"majority"`` or ``None``
        at the leaf.

        Raises
        ------
        MissingFieldError
            A split field is missing and ``missing_policy`` is ``"none"``.
        """
        path: List[Tuple[Node, Optional[str]]] = []
        node = self.root
        while not node.is_leaf:
            d = node.split.goes_left(getter(node.split.field))
            how = "primary"
            if d is None:
                d, how = route_missing(node.surrogates, node.majority_left, getter, self.missing_policy)
                if d is None:
                    raise MissingFieldError(node.split.field, node.node_id)
            path.append((node, how))
            node = self.nodes[node.left_id if d else node.right_id]
        path.append((node, None))
        return path

    def leaf_for(self, record: Mapping[str, Any]) -> Node:
        return self.decision_path(_getter(record))[-1][0]

    def predict(self, record: Mapping[str, Any]) -> float:
        """Predicted value for one record (a mapping of field name to value)."""
        return self.leaf_for(record).value

    def predict_many(self, data: Records) -> np.ndarray:
        return np.array([self.predict(rec) for rec in _iter_records(data)], dtype=float)

    def apply(self, data: Records) -> np.ndarray:
        """Leaf id reached by each record."""
        return np.array([self.leaf_for(rec).node_id for rec in _iter_records(data)], dtype=int)

    def predict_dataset(self, ds: Dataset) -> np.ndarray:
        out = np.empty(len(ds), dtype=float)
        for i in range(len(ds)):
            out[i] = self.decision_path(lambda name, i=i: ds.value(name, i))[-1][0].value
        return out

    # ----------------------------- Text export -----------------------------

    def to_text(self, digits: int = 6) -> str:
        """Indented listing: node id, split, n, deviance, predicted value.

        Leaves are marked with ``*``.
        """
        lines = [
            f"n= {self.root.n}",
            "",
            "node), split, n, deviance, yval",
            "      * denotes terminal node",
            "",
        ]
        for node in self.traverse():
            label = "root" if node.node_id == 1 else self._edge_label(node.node_id)
            star = " *" if node.is_leaf else ""
            lines.append(
                f"{'  ' * node.depth}{node.node_id}) {label} {node.n} "
                f"{node.deviance:.{digits}g} {node.value:.{digits}g}{star}"
            )
        return "\n".join(lines)

    def _edge_label(self, node_id: int) -> str:
        parent = self.nodes[node_id // 2]
        return parent.split.describe(left=(node_id % 2 == 0))

    def __str__(self) -> str:
        return self.to_text()


def _getter(record: Mapping[str, Any]) -> Callable[[str], Any]:
    return lambda name: record.get(name)


def _iter_records(data: Records) -> Iterator[Mapping[str, Any]]:
    if isinstance(data, Dataset):
        yield from data.records()
    elif isinstance(data, pd.DataFrame):
        yield from data.to_dict("records")
    elif isinstance(data, Mapping):
        yield data
    else:
        yield from data
