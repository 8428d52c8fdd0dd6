import numpy as np
import pandas as pd
import pytest

from cartree import (
    ComplexityTableRow,
    Dataset,
    DegenerateTreeError,
    InsufficientDataError,
    TreeConfig,
    build_tree,
    cross_validate,
    fit_pruned_tree,
    format_cp_table,
    prune_to_splits,
    select_one_se,
)
from cartree.validation import assign_folds, complexity_frame


def _staircase():
    x = np.arange(60)
    y = np.where(x < 20, 0.0, np.where(x < 40, 10.0, 30.0))
    return Dataset.from_frame(pd.DataFrame({"x": x, "y": y}), "y")


def _noisy(seed=7, n=150):
    rng = np.random.default_rng(seed)
    x = rng.uniform(0, 100, n)
    y = np.where(x < 30, 10.0, np.where(x < 70, 20.0, 35.0)) + rng.normal(0, 4, n)
    return Dataset.from_frame(pd.DataFrame({"x": x, "noise": rng.normal(size=n), "y": y}), "y")


def _row(n_splits, xerror, xstd):
    return ComplexityTableRow(cp=1.0 / (n_splits + 1), n_splits=n_splits, rel_error=0.0, xerror=xerror, xstd=xstd)


def test_assign_folds_is_balanced_and_seeded():
    folds = assign_folds(23, 5, np.random.default_rng(0))
    counts = np.bincount(folds)
    assert counts.max() - counts.min() <= 1
    assert counts.sum() == 23
    again = assign_folds(23, 5, np.random.default_rng(0))
    assert list(folds) == list(again)


def test_one_se_prefers_smaller_tree():
    rows = [_row(0, 1.0, 0.1), _row(1, 0.56, 0.08), _row(2, 0.5, 0.07), _row(3, 0.52, 0.07)]
    assert select_one_se(rows).n_splits == 1


def test_one_se_uses_first_minimum():
    rows = [_row(0, 1.0, 0.1), _row(1, 0.6, 0.05), _row(2, 0.5, 0.01), _row(3, 0.5, 0.2)]
    # the standard error of the 2-split row sets the limit at 0.51
    assert select_one_se(rows).n_splits == 2


def test_one_se_empty_table():
    with pytest.raises(ValueError):
        select_one_se([])


def test_table_on_staircase():
    ds = _staircase()
    config = TreeConfig(minsplit=15, folds=5)
    full = build_tree(ds, config)
    rows = cross_validate(full, ds, config)
    assert [r.n_splits for r in rows] == [0, 1, 2]
    assert rows[0].rel_error == pytest.approx(1.0)
    assert rows[-1].rel_error == pytest.approx(0.0)
    root_dev = full.root_deviance
    assert rows[0].cp == pytest.approx((root_dev - 1000.0) / root_dev)
    assert rows[1].cp == pytest.approx(1000.0 / root_dev)
    assert rows[2].cp == pytest.approx(0.01)
    assert rows[-1].xerror < rows[0].xerror
    assert all(r.xstd >= 0 for r in rows)


def test_explicit_cp_values():
    ds = _staircase()
    config = TreeConfig(minsplit=15, folds=5)
    full = build_tree(ds, config)
    rows = cross_validate(full, ds, config, cp_values=[0.05, 0.5, 0.95])
    assert [r.cp for r in rows] == [0.95, 0.5, 0.05]
    assert [r.n_splits for r in rows] == [0, 1, 2]


def test_cross_validation_is_reproducible():
    ds = _noisy()
    config = TreeConfig(minsplit=15, folds=5, seed=11)
    full = build_tree(ds, config)
    first = cross_validate(full, ds, config)
    second = cross_validate(full, ds, config)
    threaded = cross_validate(full, ds, config.replace(n_jobs=2))
    assert first == second
    assert first == threaded
    from_rng = cross_validate(full, ds, config, rng=np.random.default_rng(11))
    assert from_rng == first


def test_selected_row_is_within_one_se():
    ds = _noisy()
    result = fit_pruned_tree(ds, minsplit=15, folds=5, seed=3)
    best = min(result.table, key=lambda r: r.xerror)
    assert result.selected.xerror <= best.xerror + best.xstd
    within = [r for r in result.table if r.xerror <= best.xerror + best.xstd]
    assert result.selected.n_splits == min(r.n_splits for r in within)
    assert result.tree == prune_to_splits(result.full_tree, result.selected.n_splits)
    assert result.tree.n_splits == result.selected.n_splits


def test_folds_too_small_raise():
    ds = _staircase()
    config = TreeConfig(minsplit=20, folds=10)  # 6 records per fold, min_leaf_size 7
    full = build_tree(ds, config)
    with pytest.raises(InsufficientDataError) as exc:
        cross_validate(full, ds, config)
    assert exc.value.n_records == 60


def test_tree_without_split_raises():
    df = pd.DataFrame({"x": range(50), "y": [1.0] * 50})
    ds = Dataset.from_frame(df, "y")
    full = build_tree(ds)
    with pytest.raises(DegenerateTreeError):
        cross_validate(full, ds, TreeConfig())
    with pytest.raises(DegenerateTreeError):
        fit_pruned_tree(ds)


def test_format_cp_table():
    ds = _staircase()
    config = TreeConfig(minsplit=15, folds=5)
    rows = cross_validate(build_tree(ds, config), ds, config)
    text = format_cp_table(rows)
    lines = text.splitlines()
    assert len(lines) == len(rows) + 1
    assert "nsplit" in lines[0] and "xerror" in lines[0]
    frame = complexity_frame(rows)
    assert list(frame["nsplit"]) == [0, 1, 2]
    assert list(frame.index) == [1, 2, 3]
