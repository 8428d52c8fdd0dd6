"""Error and importance summaries of a fitted tree."""
from __future__ import annotations

from typing import Dict

import numpy as np
from loguru import logger
from sklearn.metrics import mean_squared_error

from .exceptions import InsufficientDataError
from .tree import Tree


def rmse(y_true, y_pred) -> float:
    """Root-mean-squared error over the records whose actual value is known.

    Records with a missing ``y_true`` are left out rather than counted as
    zero.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: y_true {y_true.shape} vs y_pred {y_pred.shape}")
    known = ~np.isnan(y_true)
    if not known.any():
        raise InsufficientDataError("No record has a known target", n_records=0, required=1)
    skipped = int((~known).sum())
    if skipped:
        logger.info("RMSE skips {} records with a missing target", skipped)
    return float(np.sqrt(mean_squared_error(y_true[known], y_pred[known])))


def variable_importance(tree: Tree, digits: int = 1) -> Dict[str, float]:
    """Share of the total split improvement credited to each field.

    Scores are scaled to sum to 100 and sorted in descending order; fields
    never used by a split are left out.
    """
    totals: Dict[str, float] = {}
    for node in tree.traverse():
        if node.is_leaf:
            continue
        totals[node.split.field] = totals.get(node.split.field, 0.0) + node.improvement
    grand = sum(totals.values())
    if grand <= 0:
        return {}
    scored = sorted(((name, 100.0 * v / grand) for name, v in totals.items()), key=lambda kv: kv[1], reverse=True)
    return {name: round(score, digits) for name, score in scored}
