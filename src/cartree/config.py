"""
cartree.config
==============

Fitting parameters shared by the tree builder and the pruner.

``TreeConfig`` is a pydantic model: out-of-range values are rejected when the
object is built and reported as :class:`~cartree.exceptions.InvalidConfigError`.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, model_validator

from .exceptions import InvalidConfigError

MissingPolicy = Literal["surrogate", "majority", "none"]

MAX_DEPTH_LIMIT = 30


def _config_error(exc: ValidationError) -> InvalidConfigError:
    errors = [
        {
            "field": ".".join(str(p) for p in err["loc"]) or "config",
            "message": err["msg"],
            "value": err.get("input"),
        }
        for err in exc.errors()
    ]
    summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
    return InvalidConfigError(f"Invalid tree configuration: {summary}", errors)


class TreeConfig(BaseModel):
    """Growth, pruning and cross-validation parameters.

    Parameters
    ----------
    minsplit : int, default=20
        Fewest records a node must own before a split is attempted.
    min_leaf_size : int, optional
        Fewest records allowed in either child.  Defaults to
        ``round(minsplit / 3)`` (at least 1).
    max_cp : float, default=0.01
        Complexity parameter.  Splits whose subtree does not improve the
        root sum of squares by at least this fraction are pruned away
        before cross-validation sees the tree.
    folds : int, default=10
        Number of cross-validation folds.
    seed : int, default=0
        Seed of the generator used for fold assignment.
    max_depth : int, default=30
        Depth cap; the root has depth 0.
    max_categories_exhaustive : int, default=12
        Up to this many labels the categorical subset search is exhaustive;
        above it, labels are ordered by target mean and scanned as prefixes.
    max_surrogates : int, default=5
        Surrogate splits kept per node.  ``0`` disables surrogates.
    missing_policy : {"surrogate", "majority", "none"}, default="surrogate"
        How records missing a split field are routed.
    n_jobs : int, default=1
        Worker threads used for cross-validation folds (``-1`` = all cores).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    minsplit: int = Field(default=20, ge=2)
    min_leaf_size: Optional[int] = Field(default=None, ge=1)
    max_cp: float = Field(default=0.01, ge=0.0, le=1.0)
    folds: int = Field(default=10, ge=2)
    seed: int = 0
    max_depth: int = Field(default=MAX_DEPTH_LIMIT, ge=1, le=MAX_DEPTH_LIMIT)
    max_categories_exhaustive: int = Field(default=12, ge=1, le=16)
    max_surrogates: int = Field(default=5, ge=0)
    missing_policy: MissingPolicy = "surrogate"
    n_jobs: int = 1

    _derived_leaf_size: bool = PrivateAttr(default=False)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise _config_error(exc) from exc
        self._derived_leaf_size = data.get("min_leaf_size") is None

    @model_validator(mode="before")
    @classmethod
    def _default_leaf_size(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("min_leaf_size") is None:
            try:
                minsplit = int(data.get("minsplit", 20))
            except (TypeError, ValueError):
                # left to the field validator to report
                return data
            data = {**data, "min_leaf_size": max(1, int(round(minsplit / 3)))}
        return data

    @model_validator(mode="after")
    def _check_sizes(self) -> TreeConfig:
        if self.min_leaf_size is None:
            raise ValueError("min_leaf_size could not be derived from minsplit")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be a non-zero integer")
        if self.minsplit < 2 * self.min_leaf_size:
            logger.warning(
                "minsplit={} is below 2 * min_leaf_size={}; nodes smaller than {} can never be split",
                self.minsplit,
                self.min_leaf_size,
                2 * self.min_leaf_size,
            )
        return self

    @classmethod
    def build(cls, **params: Any) -> TreeConfig:
        """Validate ``params`` and return a config.

        Raises
        ------
        InvalidConfigError
            With one entry per rejected field.
        """
        return cls(**params)

    def replace(self, **changes: Any) -> TreeConfig:
        """Return a validated copy with ``changes`` applied.

        A ``min_leaf_size`` derived from ``minsplit`` is derived again from
        the new ``minsplit``.
        """
        current = self.model_dump()
        if self._derived_leaf_size:
            del current["min_leaf_size"]
        return TreeConfig(**{**current, **changes})
