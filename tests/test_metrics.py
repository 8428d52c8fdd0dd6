import math

import numpy as np
import pandas as pd
import pytest

from cartree import Dataset, InsufficientDataError, build_tree, rmse, variable_importance


def test_rmse_skips_missing_targets():
    # the missing actual value is left out, not counted as zero
    assert rmse([1.0, np.nan, 3.0], [2.0, 100.0, 3.0]) == pytest.approx(math.sqrt(0.5))


def test_rmse_is_non_negative_float():
    value = rmse(np.array([1.0, 2.0]), np.array([1.0, 2.0]))
    assert isinstance(value, float)
    assert value == 0.0


def test_rmse_errors():
    with pytest.raises(InsufficientDataError):
        rmse([np.nan, np.nan], [1.0, 2.0])
    with pytest.raises(ValueError):
        rmse([1.0, 2.0], [1.0])


def test_variable_importance():
    x = np.arange(60)
    w = np.where(x % 2 == 0, "a", "b")
    y = np.where(x >= 40, 30.0, np.where(w == "b", 10.0, 0.0))
    ds = Dataset.from_frame(pd.DataFrame({"x": x, "w": w, "y": y}), "y")
    tree = build_tree(ds)
    assert tree.root.split.field == "x"
    assert tree[2].split.field == "w"
    vi = variable_importance(tree)
    assert list(vi) == ["x", "w"]
    assert vi["x"] == pytest.approx(89.3)
    assert vi["w"] == pytest.approx(10.7)


def test_variable_importance_of_a_leaf():
    df = pd.DataFrame({"x": range(10), "y": [1.0] * 10})
    assert variable_importance(build_tree(Dataset.from_frame(df, "y"))) == {}
