"""CART regression tree with cross-validated cost-complexity pruning.

This module wires :mod:`cartree.builder`, :mod:`cartree.pruning` and
:mod:`cartree.validation` into a scikit-learn style estimator, with the
text and rule exports used when reporting a fitted tree.
"""
from __future__ import annotations

import numbers
from typing import Any, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.base import BaseEstimator, RegressorMixin

from .builder import build_tree
from .config import TreeConfig
from .dataset import Dataset, is_missing
from .metrics import variable_importance
from .pruning import prune
from .splitting import route_missing
from .tree import Node, Tree
from .validation import fit_pruned_tree, format_cp_table

# ----------------------------- Helpers -----------------------------

def _all_numbers(col: np.ndarray) -> bool:
    known = [v for v in col if not is_missing(v)]
    return bool(known) and all(isinstance(v, numbers.Number) and not isinstance(v, bool) for v in known)


# ----------------------------- Regressor -----------------------------

class CARTRegressor(RegressorMixin, BaseEstimator):
    r"""
    CARTRegressor(minsplit=20, min_leaf_size=None, max_cp=0.01, folds=10, seed=0,
                  max_depth=30, max_categories_exhaustive=12, max_surrogates=5,
                  missing_policy="surrogate", n_jobs=1, xval=True,
                  feature_names=None, categorical_features=None, exclude=None)

    A CART regression tree with a scikit-learn style API.

    **Core behavior**

    - **Split criterion**: reduction of the sum of squares.  Numeric thresholds
      are midpoints between distinct sorted values (left is ``value < threshold``);
      categorical fields use label-subset splits (exhaustive up to
      ``max_categories_exhaustive`` labels, mean-ordered scan otherwise).
    - **Missing values**: a record missing the split field is routed by
      surrogate splits, then by the majority direction.
    - **Pruning**: the grown tree is filtered at ``max_cp``; when ``xval`` is
      set, the pruning level is then picked by ``folds``-fold
      cross-validation and the one-standard-error rule.

    Parameters
    ----------
    minsplit : int, default=20
        Fewest records a node must own before a split is attempted.
    min_leaf_size : int, optional
        Fewest records in either child; defaults to ``round(minsplit / 3)``.
    max_cp : float, default=0.01
        Complexity parameter applied to the grown tree.
    folds : int, default=10
        Cross-validation folds.
    seed : int, default=0
        Seed of the fold assignment.
    max_depth : int, default=30
        Depth cap (the root has depth 0).
    max_categories_exhaustive : int, default=12
        Up to this many labels the subset search is exhaustive.
    max_surrogates : int, default=5
        Surrogate splits kept per node.
    missing_policy : {"surrogate", "majority", "none"}, default="surrogate"
        Routing of records missing a split field.  With ``"none"``,
        :meth:`predict` raises :class:`~cartree.exceptions.MissingFieldError`.
    n_jobs : int, default=1
        Threads used for cross-validation folds.
    xval : bool, default=True
        Select the pruning level by cross-validation.  When False the
        ``max_cp``-filtered tree is used as is.
    feature_names : sequence of str, optional
        Column names for array input (used in textual exports).
    categorical_features : sequence of str, optional
        Columns to treat as categorical regardless of dtype.
    exclude : sequence of str, optional
        Columns left out of the fit.

    Attributes
    ----------
    tree_ : Tree
        The selected (pruned) tree used by :meth:`predict`.
    full_tree_ : Tree
        The tree before cross-validated pruning.
    cp_table_ : list of ComplexityTableRow or None
        Complexity table, smallest tree first (None when ``xval=False``).
    selected_row_ : ComplexityTableRow or None
        Row picked by the one-standard-error rule.
    n_dropped_ : int
        Training records dropped because their target was missing.
    feature_names_ : list of str
        Input columns seen during fit.
    variable_importance_ : dict[str, float]
        Importance per field, scaled to sum to 100.
    feature_importances_ : ndarray of shape (n_features,)
        The same importances as fractions, aligned with ``feature_names_``.
    """

    def __init__(self,
                 minsplit: int = 20,
                 min_leaf_size: Optional[int] = None,
                 max_cp: float = 0.01,
                 folds: int = 10,
                 seed: int = 0,
                 max_depth: int = 30,
                 max_categories_exhaustive: int = 12,
                 max_surrogates: int = 5,
                 missing_policy: str = "surrogate",
                 n_jobs: int = 1,
                 xval: bool = True,
                 feature_names: Optional[Sequence[str]] = None,
                 categorical_features: Optional[Sequence[str]] = None,
                 exclude: Optional[Sequence[str]] = None):
        self.minsplit = minsplit
        self.min_leaf_size = min_leaf_size
        self.max_cp = max_cp
        self.folds = folds
        self.seed = seed
        self.max_depth = max_depth
        self.max_categories_exhaustive = max_categories_exhaustive
        self.max_surrogates = max_surrogates
        self.missing_policy = missing_policy
        self.n_jobs = n_jobs
        self.xval = xval
        self.feature_names = feature_names
        self.categorical_features = categorical_features
        self.exclude = exclude

    # ----------------------------- Public API -----------------------------

    def tree_config(self) -> TreeConfig:
        """The validated :class:`TreeConfig` for the current parameters."""
        return TreeConfig.build(
            minsplit=self.minsplit,
            min_leaf_size=self.min_leaf_size,
            max_cp=self.max_cp,
            folds=self.folds,
            seed=self.seed,
            max_depth=self.max_depth,
            max_categories_exhaustive=self.max_categories_exhaustive,
            max_surrogates=self.max_surrogates,
            missing_policy=self.missing_policy,
            n_jobs=self.n_jobs,
        )

    def fit(self, X, y):
        config = self.tree_config()
        df = self._as_frame(X, fitting=True)
        target = getattr(y, "name", None) or "target"
        if target in df.columns:
            raise ValueError(f"Target name '{target}' clashes with a feature column")
        y = np.asarray(y, dtype=object).ravel()
        if y.shape[0] != df.shape[0]:
            raise ValueError("X and y have a different number of records")
        df[target] = pd.to_numeric(pd.Series(y, index=df.index))

        ds = Dataset.from_frame(
            df, target,
            exclude=self.exclude or (),
            categorical=self.categorical_features,
        )
        self.feature_names_ = [c for c in df.columns if c != target]
        self.n_features_in_ = len(self.feature_names_)
        self.n_dropped_ = ds.n_dropped

        if self.xval:
            result = fit_pruned_tree(ds, config)
            self.full_tree_ = result.full_tree
            self.cp_table_ = result.table
            self.selected_row_ = result.selected
            self.tree_ = result.tree
        else:
            self.full_tree_ = build_tree(ds, config)
            self.cp_table_ = None
            self.selected_row_ = None
            self.tree_ = self.full_tree_

        self.variable_importance_ = variable_importance(self.tree_)
        self.feature_importances_ = np.array(
            [self.variable_importance_.get(name, 0.0) / 100.0 for name in self.feature_names_], dtype=float
        )
        return self

    def predict(self, X):
        self._check_fitted()
        return self.tree_.predict_many(self._as_frame(X))

    def apply(self, X):
        """Leaf node id reached by each record."""
        self._check_fitted()
        return self.tree_.apply(self._as_frame(X))

    def prune(self, cp: float) -> Tree:
        """The full tree pruned at complexity ``cp`` (relative to the root deviance)."""
        self._check_fitted()
        return prune(self.full_tree_, cp)

    # ----------------------------- Pretty / Rules -----------------------------

    def export_text(self, digits: int = 6) -> str:
        """Indented node listing of the selected tree (see :meth:`Tree.to_text`)."""
        self._check_fitted()
        return self.tree_.to_text(digits)

    def print_tree(self) -> None:
        """
        Pretty-print the selected tree to ``stdout`` as nested if/else blocks.

        Raises
        ------
        ValueError
            If the estimator has not been fitted.
        """
        self._check_fitted()
        self._print_node(self.tree_, self.tree_.root, "")

    def _print_node(self, tree: Tree, node: Node, indent: str = "") -> None:
        if node.is_leaf:
            print(f"{indent}Predict {node.value:.4f} (N={node.n})")
            return
        print(f"{indent}if {node.split.describe(left=True)}:")
        self._print_node(tree, tree[node.left_id], indent + "  ")
        print(f"{indent}else:  # {node.split.describe(left=False)}")
        self._print_node(tree, tree[node.right_id], indent + "  ")

    def print_cp_table(self) -> None:
        """Print the complexity table (requires ``xval=True``)."""
        self._check_fitted()
        if self.cp_table_ is None:
            raise ValueError("No complexity table: the estimator was fitted with xval=False")
        print(format_cp_table(self.cp_table_))

    def export_rules(self) -> List[str]:
        """
        Export all decision rules of the selected tree.

        Each rule describes a path from the root to a leaf and reports the
        predicted value and the number of training records in the leaf.

        Returns
        -------
        list[str]
            Strings of the form ``"<antecedent> => value=<prediction> (N=<n>)"``.

        Raises
        ------
        ValueError
            If the model has not been fitted.
        """
        self._check_fitted()
        rules: List[str] = []
        self._collect_rules(self.tree_, self.tree_.root, [], rules)
        return rules

    def _collect_rules(self, tree: Tree, node: Node, parts: List[str], rules: List[str]) -> None:
        if node.is_leaf:
            antecedent = " AND ".join(parts) if parts else "<root>"
            rules.append(f"{antecedent} => value={node.value:.6g} (N={node.n})")
            return
        self._collect_rules(tree, tree[node.left_id], parts + [node.split.describe(left=True)], rules)
        self._collect_rules(tree, tree[node.right_id], parts + [node.split.describe(left=False)], rules)

    def predict_rule(self, X: Iterable[Any]) -> List[str]:
        """
        Return the decision rule antecedent for each input record.

        Conditions reached through a surrogate split or the majority
        direction are tagged ``[surrogate]`` / ``[majority]``.  Under
        ``missing_policy="none"`` the trace stops at the first missing split
        field with ``"<field> MISSING"``.

        Raises
        ------
        ValueError
            If the model has not been fitted.
        """
        self._check_fitted()
        df = self._as_frame(X)
        return [self._trace_rule(rec) for rec in df.to_dict("records")]

    def _trace_rule(self, rec) -> str:
        tree = self.tree_
        node = tree.root
        parts: List[str] = []
        while not node.is_leaf:
            d = node.split.goes_left(rec.get(node.split.field))
            tag = ""
            if d is None:
                d, how = route_missing(node.surrogates, node.majority_left, rec.get, tree.missing_policy)
                if d is None:
                    parts.append(f"{node.split.field} MISSING")
                    break
                tag = f" [{how}]"
            parts.append(node.split.describe(left=d) + tag)
            node = tree[node.left_id if d else node.right_id]
        return " AND ".join(parts) if parts else "<root>"

    # ----------------------------- Input handling -----------------------------

    def _check_fitted(self) -> None:
        if getattr(self, "tree_", None) is None:
            raise ValueError("Estimator not fitted. Call fit(...) first.")

    def _as_frame(self, X, fitting: bool = False) -> pd.DataFrame:
        if isinstance(X, pd.DataFrame):
            df = X.reset_index(drop=True).copy()
            if not fitting:
                absent = [name for name in self.tree_.schema if name not in df.columns]
                if absent:
                    raise ValueError(f"Columns seen during fit are absent from X: {absent}")
            return df
        Xa = np.asarray(X, dtype=object)
        if Xa.ndim == 1:
            Xa = Xa.reshape(1, -1)
        if Xa.ndim != 2:
            raise ValueError("X must be 2-dimensional")
        if fitting:
            names = (list(self.feature_names) if self.feature_names is not None
                     else [f"x{j}" for j in range(Xa.shape[1])])
        else:
            names = self.feature_names_
        if len(names) != Xa.shape[1]:
            raise ValueError(f"X has {Xa.shape[1]} columns, expected {len(names)}")
        df = pd.DataFrame(Xa, columns=names)
        for name in names:
            if _all_numbers(df[name].to_numpy()):
                df[name] = pd.to_numeric(df[name])
        logger.trace("Converted array input of shape {} to a DataFrame", Xa.shape)
        return df
