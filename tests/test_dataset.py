import numpy as np
import pandas as pd
import pytest

from cartree import Dataset, InvalidConfigError, sample_split


def _frame():
    return pd.DataFrame({
        "price": [10.0, np.nan, 30.0, 40.0, 50.0],
        "hp": [100, 110, None, 130, 140],
        "make": ["a", "b", "a", None, "c"],
        "id": [1, 2, 3, 4, 5],
    })


def test_missing_targets_are_dropped_and_counted():
    ds = Dataset.from_frame(_frame(), "price")
    assert len(ds) == 4
    assert ds.n_dropped == 1
    assert list(ds.y) == [10.0, 30.0, 40.0, 50.0]


def test_schema_inference_and_exclusion():
    ds = Dataset.from_frame(_frame(), "price", exclude=["id"])
    assert ds.fields == ["hp", "make"]
    assert ds.schema == {"hp": "numeric", "make": "categorical"}


def test_forced_categorical_column():
    ds = Dataset.from_frame(_frame(), "price", categorical=["id"])
    assert ds.schema["id"] == "categorical"


def test_missing_predictor_values():
    ds = Dataset.from_frame(_frame(), "price")
    # record 1 of the cleaned table is the original row with hp=None
    assert ds.value("hp", 1) is None
    assert ds.value("make", 2) is None
    assert list(ds.missing_mask("hp")) == [False, True, False, False]
    assert list(ds.missing_mask("make")) == [False, False, True, False]


def test_columns_are_read_only():
    ds = Dataset.from_frame(_frame(), "price")
    with pytest.raises(ValueError):
        ds.columns["hp"][0] = 1.0


def test_unknown_columns_raise():
    with pytest.raises(InvalidConfigError):
        Dataset.from_frame(_frame(), "mpg")
    with pytest.raises(InvalidConfigError) as exc:
        Dataset.from_frame(_frame(), "price", exclude=["nope"])
    assert exc.value.fields == ["features"]


def test_non_numeric_target_raises():
    with pytest.raises(InvalidConfigError):
        Dataset.from_frame(_frame(), "make")


def test_subset_and_records():
    ds = Dataset.from_frame(_frame(), "price", exclude=["id"])
    sub = ds.subset([3, 0])
    assert len(sub) == 2
    assert list(sub.y) == [50.0, 10.0]
    assert sub.record(0) == {"hp": 140.0, "make": "c", "price": 50.0}
    assert len(list(ds.records())) == 4


def test_from_records_with_schema():
    records = [
        {"size": 1, "color": "red", "y": 1.0},
        {"size": 2, "color": "blue", "y": 2.0},
        {"color": "red", "y": 3.0},
    ]
    ds = Dataset.from_records(records, "y", schema={"color": "categorical", "size": "numeric"})
    assert ds.fields == ["color", "size"]
    assert ds.value("size", 2) is None


def test_sample_split_is_seeded():
    df = pd.DataFrame({"x": range(40), "y": range(40)})
    train, test = sample_split(df, 10, seed=3)
    assert len(train) == 30 and len(test) == 10
    train2, test2 = sample_split(df, 10, seed=3)
    assert list(test.index) == list(test2.index)
