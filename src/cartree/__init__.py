# cartree/__init__.py
"""
cartree: CART regression trees with cross-validated cost-complexity pruning.

Exports:
    - CARTRegressor
    - Dataset, sample_split
    - TreeConfig
    - Tree, Node, NumericSplit, CategoricalSplit, SurrogateSplit
    - build_tree
    - prune, prune_to_splits, cost_complexity_path
    - cross_validate, select_one_se, fit_pruned_tree, format_cp_table,
      ComplexityTableRow, PruningResult
    - rmse, variable_importance
    - enable_logging
    - CartreeError, InvalidConfigError, InsufficientDataError,
      DegenerateTreeError, MissingFieldError
"""
from loguru import logger

from .builder import build_tree
from .config import TreeConfig
from .dataset import Dataset, sample_split
from .exceptions import (
    CartreeError,
    DegenerateTreeError,
    InsufficientDataError,
    InvalidConfigError,
    MissingFieldError,
)
from .logging import PACKAGE_NAME, enable_logging
from .metrics import rmse, variable_importance
from .pruning import cost_complexity_path, prune, prune_to_splits
from .regressor import CARTRegressor
from .splitting import CategoricalSplit, NumericSplit, SurrogateSplit
from .tree import Node, Tree
from .validation import (
    ComplexityTableRow,
    PruningResult,
    cross_validate,
    fit_pruned_tree,
    format_cp_table,
    select_one_se,
)

logger.disable(PACKAGE_NAME)

__all__ = [
    "CARTRegressor",
    "CartreeError",
    "CategoricalSplit",
    "ComplexityTableRow",
    "Dataset",
    "DegenerateTreeError",
    "InsufficientDataError",
    "InvalidConfigError",
    "MissingFieldError",
    "Node",
    "NumericSplit",
    "PruningResult",
    "SurrogateSplit",
    "Tree",
    "TreeConfig",
    "build_tree",
    "cost_complexity_path",
    "cross_validate",
    "enable_logging",
    "fit_pruned_tree",
    "format_cp_table",
    "prune",
    "prune_to_splits",
    "rmse",
    "sample_split",
    "select_one_se",
    "variable_importance",
]
__version__ = "0.1.0"
