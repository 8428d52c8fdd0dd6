"""
cartree.exceptions
==================

Errors raised by the tree builder, the pruner and the estimator.

All of them derive from :class:`CartreeError`, and also from ``ValueError`` so
that callers already catching bad-input errors keep working.  None of them is
handled inside the package: the caller decides whether to retry with a
different configuration.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class CartreeError(ValueError):
    """Base class for every error raised by ``cartree``."""


class InvalidConfigError(CartreeError):
    """A configuration value is out of range or refers to an unknown column.

    Parameters
    ----------
    message : str
        Human readable description.
    errors : list[dict], optional
        One entry per offending field, e.g. ``{"field": "minsplit",
        "message": "...", "value": 1}``.
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    @property
    def fields(self) -> List[str]:
        return [str(e.get("field")) for e in self.errors]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={str(self)!r}, errors={self.errors!r})"


class InsufficientDataError(CartreeError):
    """An operation cannot meet the minimum group-size constraints.

    Raised for instance when a cross-validation fold would hold fewer records
    than ``min_leaf_size``.
    """

    def __init__(self, message: str, *, n_records: int = 0, required: int = 0):
        super().__init__(message)
        self.n_records = int(n_records)
        self.required = int(required)


class DegenerateTreeError(CartreeError):
    """No valid split exists anywhere: the tree is a single root leaf."""


class MissingFieldError(CartreeError):
    """Prediction is blocked by a missing split field and no fallback applies.

    Attributes
    ----------
    field : str
        Name of the field the split needed.
    node_id : int
        Identifier of the node where routing stopped.
    """

    def __init__(self, field: str, node_id: int):
        super().__init__(f"Field '{field}' is missing and is required by the split at node {node_id}")
        self.field = field
        self.node_id = int(node_id)
