import numpy as np
import pandas as pd
import pytest

from cartree import Dataset, InsufficientDataError, MissingFieldError, build_tree


def _staircase(with_copy=False):
    """60 records: y is 0 below x=20, 10 below x=40, 30 above."""
    x = np.arange(60)
    y = np.where(x < 20, 0.0, np.where(x < 40, 10.0, 30.0))
    df = pd.DataFrame({"x": x})
    if with_copy:
        df["z"] = 2 * x
    df["y"] = y
    return Dataset.from_frame(df, "y")


def _assert_partitions(tree, ds):
    for node in tree.traverse():
        assert node.value == pytest.approx(ds.y[node.indices].mean())
        assert node.n == len(node.indices)
        if node.is_leaf:
            continue
        left, right = tree.children(node.node_id)
        assert left.node_id == 2 * node.node_id
        assert right.node_id == 2 * node.node_id + 1
        ls, rs = set(left.indices.tolist()), set(right.indices.tolist())
        assert not ls & rs
        assert len(ls | rs) == node.n - node.n_excluded
        assert ls | rs <= set(node.indices.tolist())


def test_staircase_tree_structure():
    ds = _staircase()
    tree = build_tree(ds)
    assert tree.n_splits == 2
    assert sorted(tree.nodes) == [1, 2, 3, 4, 5]
    assert tree.root.split.threshold == 39.5
    assert tree[2].split.threshold == 19.5
    assert [tree[i].value for i in (3, 4, 5)] == [30.0, 0.0, 10.0]
    assert tree.depth == 2
    _assert_partitions(tree, ds)


def test_node_indices_are_read_only():
    tree = build_tree(_staircase())
    for node in tree.traverse():
        assert not node.indices.flags.writeable
    with pytest.raises(ValueError):
        tree.root.indices[0] = 5


def test_to_text_listing():
    tree = build_tree(_staircase())
    lines = tree.to_text().splitlines()
    assert lines[0] == "n= 60"
    assert "  2) x<39.5 40 1000 5" in lines
    assert "  3) x>=39.5 20 0 30 *" in lines
    assert "    4) x<19.5 20 0 0 *" in lines
    assert lines[5].startswith("1) root 60 ")


def test_predict_and_apply():
    ds = _staircase()
    tree = build_tree(ds)
    assert tree.predict({"x": 50}) == 30.0
    assert tree.predict({"x": 5}) == 0.0
    assert list(tree.apply([{"x": 5}, {"x": 25}, {"x": 45}])) == [4, 5, 3]
    assert np.allclose(tree.predict_dataset(ds), ds.y)
    frame = pd.DataFrame({"x": [1, 59]})
    assert list(tree.predict_many(frame)) == [0.0, 30.0]


def test_traverse_is_preorder():
    tree = build_tree(_staircase())
    assert [nd.node_id for nd in tree.traverse()] == [1, 2, 4, 5, 3]
    assert [nd.node_id for nd in tree.leaves()] == [4, 5, 3]


def test_missing_field_goes_with_majority():
    tree = build_tree(_staircase())
    # 40 records went left at the root, 20 and 20 at node 2
    assert tree.predict({"x": None}) == 0.0
    path = tree.decision_path(lambda name: None)
    assert [how for _, how in path] == ["majority", "majority", None]


def test_missing_field_uses_surrogate():
    tree = build_tree(_staircase(with_copy=True))
    assert tree.root.split.field == "x"
    assert tree.root.surrogates[0].field == "z"
    assert tree.predict({"x": None, "z": 100}) == 30.0
    path = tree.decision_path({"x": None, "z": 100}.get)
    assert path[0][1] == "surrogate"


def test_missing_field_without_fallback_raises():
    tree = build_tree(_staircase(), missing_policy="none")
    with pytest.raises(MissingFieldError) as exc:
        tree.predict({"x": None})
    assert exc.value.field == "x"
    assert exc.value.node_id == 1


def test_policy_none_excludes_training_records():
    x = np.arange(60, dtype=float)
    x[[10, 50]] = np.nan
    y = np.where(np.arange(60) < 30, 0.0, 10.0)
    ds = Dataset.from_frame(pd.DataFrame({"x": x, "y": y}), "y")
    tree = build_tree(ds, missing_policy="none", minsplit=10)
    assert tree.root.n == 60
    assert tree.root.n_excluded == 2
    _assert_partitions(tree, ds)


def test_policy_surrogate_routes_training_records():
    x = np.arange(60, dtype=float)
    x[[10, 50]] = np.nan
    y = np.where(np.arange(60) < 30, 0.0, 10.0)
    # z tracks x except for one swapped pair, so x stays the primary split
    z = np.arange(60)
    z[[29, 30]] = [30, 29]
    ds = Dataset.from_frame(pd.DataFrame({"x": x, "z": z, "y": y}), "y")
    tree = build_tree(ds, minsplit=10)
    assert tree.root.split.field == "x"
    assert tree.root.n_excluded == 0
    left, right = tree.children(1)
    assert 10 in left.indices and 50 in right.indices
    _assert_partitions(tree, ds)


def test_max_depth_caps_growth():
    tree = build_tree(_staircase(), max_depth=1)
    assert tree.n_splits == 1
    assert tree.depth == 1


def test_minsplit_stops_growth():
    # node 2 owns 40 records, fewer than minsplit
    tree = build_tree(_staircase(), minsplit=41, min_leaf_size=7)
    assert tree.n_splits == 1


def test_constant_target_is_a_single_leaf():
    df = pd.DataFrame({"x": range(30), "y": [3.0] * 30})
    tree = build_tree(Dataset.from_frame(df, "y"))
    assert tree.n_splits == 0
    assert tree.root.value == 3.0


def test_empty_dataset_raises():
    df = pd.DataFrame({"x": [1.0, 2.0], "y": [np.nan, np.nan]})
    ds = Dataset.from_frame(df, "y")
    assert ds.n_dropped == 2
    with pytest.raises(InsufficientDataError):
        build_tree(ds)


def test_trees_compare_by_structure():
    ds = _staircase()
    assert build_tree(ds) == build_tree(ds)
    assert build_tree(ds) != build_tree(ds, max_depth=1)
