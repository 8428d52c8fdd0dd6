import math

import numpy as np
import pandas as pd
import pytest

from cartree import CategoricalSplit, Dataset, NumericSplit
from cartree.splitting import find_best_split, find_surrogates, route_missing


def _ds(**cols):
    y = cols.pop("y")
    df = pd.DataFrame(cols)
    df["y"] = y
    return Dataset.from_frame(df, "y")


def _all(ds):
    return np.arange(len(ds))


def test_numeric_split_at_midpoint():
    ds = _ds(x=[1, 2, 3, 4, 5, 6], y=[1, 1, 1, 5, 5, 5])
    cand = find_best_split(ds, _all(ds), min_leaf_size=1)
    assert cand.rule == NumericSplit("x", 3.5)
    # children are constant, so the whole sum of squares is removed
    assert cand.improvement == pytest.approx(24.0)
    assert list(cand.left) == [0, 1, 2]
    assert list(cand.right) == [3, 4, 5]


def test_ties_keep_smallest_threshold():
    ds = _ds(x=[1, 2, 3, 4], y=[0, 1, 1, 0])
    cand = find_best_split(ds, _all(ds), min_leaf_size=1)
    assert cand.rule.threshold == 1.5


def test_ties_keep_first_field():
    ds = _ds(b=[1, 2, 3, 4, 5, 6], a=[1, 2, 3, 4, 5, 6], y=[1, 1, 1, 5, 5, 5])
    cand = find_best_split(ds, _all(ds), min_leaf_size=1)
    assert cand.rule.field == "b"


def test_min_leaf_size_limits_candidates():
    ds = _ds(x=[1, 2, 3, 4, 5, 6], y=[1, 5, 5, 5, 5, 5])
    cand = find_best_split(ds, _all(ds), min_leaf_size=2)
    assert len(cand.left) >= 2 and len(cand.right) >= 2
    assert find_best_split(ds, _all(ds), min_leaf_size=4) is None


def test_constant_target_has_no_split():
    ds = _ds(x=[1, 2, 3, 4], y=[2, 2, 2, 2])
    assert find_best_split(ds, _all(ds), min_leaf_size=1) is None


def test_categorical_subset_split():
    ds = _ds(c=["A", "B", "C", "A", "B", "C"], y=[1, 10, 1, 1, 10, 1])
    cand = find_best_split(ds, _all(ds), min_leaf_size=1)
    assert cand.rule == CategoricalSplit("c", frozenset({"A", "C"}), frozenset({"B"}))
    assert cand.improvement == pytest.approx(108.0)


def test_categorical_ordered_scan_above_cap():
    labels = list("ABCDE")
    means = {"A": 5.0, "B": 1.0, "C": 5.0, "D": 1.0, "E": 9.0}
    c = labels * 2
    ds = _ds(c=c, y=[means[v] for v in c])
    exhaustive = find_best_split(ds, _all(ds), min_leaf_size=1, max_categories_exhaustive=12)
    ordered = find_best_split(ds, _all(ds), min_leaf_size=1, max_categories_exhaustive=2)
    # mean order B,D | A,C | E puts the best subset among the prefixes
    assert ordered.improvement == pytest.approx(exhaustive.improvement)


def test_missing_values_take_no_part():
    ds = _ds(x=[1, 2, None, 4, 5, 6], y=[1, 1, 100, 5, 5, 5])
    cand = find_best_split(ds, _all(ds), min_leaf_size=1)
    assert list(cand.missing) == [2]
    assert cand.rule == NumericSplit("x", 3.0)


def test_goes_left():
    num = NumericSplit("x", 3.5)
    assert num.goes_left(3) is True
    assert num.goes_left(3.5) is False
    assert num.goes_left(None) is None
    assert num.goes_left(math.nan) is None
    cat = CategoricalSplit("c", frozenset({"A"}), frozenset({"B"}))
    assert cat.goes_left("A") is True
    assert cat.goes_left("B") is False
    assert cat.goes_left("Z") is None
    assert num.describe(left=False) == "x>=3.5"
    assert cat.describe() == "c=A"


def test_surrogate_mimics_primary():
    ds = _ds(x=[1, 2, 3, 4, 5, 6], z=[10, 20, 30, 40, 50, 60], w=[0, 0, 1, 1, 0, 0], y=[1, 1, 1, 5, 5, 5])
    primary = NumericSplit("x", 3.5)
    found = find_surrogates(ds, _all(ds), primary, max_surrogates=5)
    assert found[0].field == "z"
    assert found[0].agreement == pytest.approx(1.0)
    assert found[0].adjusted == pytest.approx(1.0)
    assert found[0].goes_left(15) is True
    assert found[0].goes_left(55) is False
    # w agrees with the primary split no more often than the majority rule
    assert all(s.field != "w" for s in found)


def test_reversed_surrogate():
    ds = _ds(x=[1, 2, 3, 4, 5, 6], z=[60, 50, 40, 30, 20, 10], y=[1, 1, 1, 5, 5, 5])
    found = find_surrogates(ds, _all(ds), NumericSplit("x", 3.5), max_surrogates=1)
    assert found[0].reverse is True
    assert found[0].goes_left(55) is True


def test_route_missing_policies():
    sur = find_surrogates(
        _ds(x=[1, 2, 3, 4], z=[1, 2, 3, 4], y=[0, 0, 1, 1]),
        np.arange(4), NumericSplit("x", 2.5), max_surrogates=1,
    )
    record = {"x": None, "z": 4}
    assert route_missing(sur, True, record.get, "surrogate") == (False, "surrogate")
    assert route_missing(sur, True, record.get, "majority") == (True, "majority")
    assert route_missing(sur, True, record.get, "none") == (None, None)
    assert route_missing(sur, True, {"x": None}.get, "surrogate") == (True, "majority")
