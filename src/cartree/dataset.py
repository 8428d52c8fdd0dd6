"""
cartree.dataset
===============

Column-wise storage of the training table.

A :class:`Dataset` holds one numpy array per field (``float`` with ``NaN`` for
numeric fields, ``object`` with ``None`` for categorical ones) plus the target
vector.  Records whose target is missing are dropped when the dataset is
built; how many were dropped is kept in ``n_dropped``.  Arrays are flagged
read-only so the builder and the pruner can share them between threads.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.model_selection import train_test_split

from .exceptions import InvalidConfigError

FieldType = Literal["numeric", "categorical"]

NUMERIC: FieldType = "numeric"
CATEGORICAL: FieldType = "categorical"


def is_missing(v: Any) -> bool:
    """True for ``None`` and float ``NaN`` (including ``pd.NA``/``NaT``)."""
    if v is None:
        return True
    try:
        return bool(pd.isna(v))
    except (TypeError, ValueError):
        # array-like values are never treated as missing scalars
        return False


def _readonly(a: np.ndarray) -> np.ndarray:
    a.flags.writeable = False
    return a


class Dataset:
    """An immutable training table with a numeric target.

    Parameters
    ----------
    columns : dict[str, ndarray]
        Field name to column array, all of the same length.
    schema : dict[str, {"numeric", "categorical"}]
        Field types, in schema order.  Schema order drives split tie-breaks.
    y : ndarray of shape (n_records,)
        Target values; must not contain ``NaN``.
    target : str
        Name of the target field.
    n_dropped : int, default=0
        Records removed at ingestion because their target was missing.
    """

    def __init__(self, columns: Dict[str, np.ndarray], schema: Dict[str, FieldType],
                 y: np.ndarray, target: str, n_dropped: int = 0):
        y = np.asarray(y, dtype=float)
        if np.isnan(y).any():
            raise InvalidConfigError(f"Target '{target}' contains missing values; build the dataset with from_frame")
        for name in schema:
            if name not in columns:
                raise InvalidConfigError(f"Schema field '{name}' has no column")
            if len(columns[name]) != len(y):
                raise InvalidConfigError(f"Column '{name}' length does not match the target length")
        self.schema: Dict[str, FieldType] = dict(schema)
        self.columns: Dict[str, np.ndarray] = {
            name: _readonly(np.array(columns[name], dtype=float if kind == NUMERIC else object))
            for name, kind in self.schema.items()
        }
        self.y = _readonly(y.copy())
        self.target = target
        self.n_dropped = int(n_dropped)

    # ----------------------------- Construction -----------------------------

    @classmethod
    def from_frame(cls, df: pd.DataFrame, target: str, *,
                   features: Optional[Sequence[str]] = None,
                   exclude: Iterable[str] = (),
                   categorical: Optional[Iterable[str]] = None) -> Dataset:
        """Build a dataset from a DataFrame.

        Parameters
        ----------
        df : DataFrame
            Source table.  It is not modified.
        target : str
            Numeric target column.
        features : sequence of str, optional
            Predictor columns in schema order.  Defaults to every column but
            ``target``.
        exclude : iterable of str
            Columns removed from ``features``.
        categorical : iterable of str, optional
            Columns forced to be categorical.  Columns with object, string,
            category or bool dtype are categorical anyway.

        Raises
        ------
        InvalidConfigError
            Unknown column names, or a non-numeric target.
        """
        if target not in df.columns:
            raise InvalidConfigError(f"Target column '{target}' not found",
                                     [{"field": "target", "message": "not found", "value": target}])
        excluded = set(exclude)
        names = list(features) if features is not None else [c for c in df.columns if c != target]
        unknown = [c for c in list(names) + sorted(excluded, key=str) if c not in df.columns]
        if unknown:
            raise InvalidConfigError(f"Columns not found: {unknown}",
                                     [{"field": "features", "message": "not found", "value": c} for c in unknown])
        names = [c for c in names if c != target and c not in excluded]
        forced = set(categorical or ())
        missing_forced = sorted(c for c in forced if c not in df.columns)
        if missing_forced:
            raise InvalidConfigError(f"Categorical columns not found: {missing_forced}")

        try:
            y_all = pd.to_numeric(df[target], errors="raise").to_numpy(dtype=float, na_value=np.nan)
        except (TypeError, ValueError) as exc:
            raise InvalidConfigError(f"Target column '{target}' must be numeric") from exc
        keep = ~np.isnan(y_all)
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.info("Dropped {} of {} records with a missing '{}'", n_dropped, len(y_all), target)

        schema: Dict[str, FieldType] = {}
        columns: Dict[str, np.ndarray] = {}
        for name in names:
            col = df[name]
            if name in forced or _is_categorical_dtype(col):
                schema[name] = CATEGORICAL
                values = col.astype(object).to_numpy()
                columns[name] = np.array([None if is_missing(v) else v for v in values[keep]], dtype=object)
            else:
                schema[name] = NUMERIC
                columns[name] = pd.to_numeric(col, errors="raise").to_numpy(dtype=float, na_value=np.nan)[keep]
        return cls(columns, schema, y_all[keep], target, n_dropped=n_dropped)

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]], target: str, *,
                     schema: Optional[Mapping[str, FieldType]] = None,
                     exclude: Iterable[str] = ()) -> Dataset:
        """Build a dataset from a list of dict records.

        When ``schema`` is given it fixes both the field order and the field
        types; otherwise both are inferred from the records.
        """
        df = pd.DataFrame.from_records(list(records))
        if schema is None:
            return cls.from_frame(df, target, exclude=exclude)
        for name in schema:
            if name not in df.columns:
                df[name] = None
        bad = {k: v for k, v in schema.items() if v not in (NUMERIC, CATEGORICAL)}
        if bad:
            raise InvalidConfigError(f"Unknown field types: {bad}")
        return cls.from_frame(
            df, target,
            features=list(schema),
            exclude=exclude,
            categorical=[k for k, v in schema.items() if v == CATEGORICAL],
        )

    # ----------------------------- Access -----------------------------

    @property
    def fields(self) -> List[str]:
        return list(self.schema)

    def __len__(self) -> int:
        return int(self.y.shape[0])

    def __repr__(self) -> str:
        return f"Dataset(n={len(self)}, target={self.target!r}, fields={self.fields!r}, n_dropped={self.n_dropped})"

    def is_numeric(self, name: str) -> bool:
        return self.schema[name] == NUMERIC

    def value(self, name: str, i: int) -> Any:
        v = self.columns[name][i]
        if self.schema[name] == NUMERIC:
            return None if np.isnan(v) else float(v)
        return v

    def record(self, i: int) -> Dict[str, Any]:
        """Record ``i`` as a dict, target included."""
        rec = {name: self.value(name, i) for name in self.schema}
        rec[self.target] = float(self.y[i])
        return rec

    def records(self) -> Iterator[Dict[str, Any]]:
        for i in range(len(self)):
            yield self.record(i)

    def missing_mask(self, name: str) -> np.ndarray:
        col = self.columns[name]
        if self.schema[name] == NUMERIC:
            return np.isnan(col)
        return np.array([v is None for v in col], dtype=bool)

    def subset(self, indices: Sequence[int]) -> Dataset:
        """A new dataset holding the records at ``indices`` (in that order)."""
        idx = np.asarray(indices, dtype=int)
        return Dataset(
            {name: col[idx] for name, col in self.columns.items()},
            self.schema,
            self.y[idx],
            self.target,
        )

    def to_frame(self) -> pd.DataFrame:
        data = {name: list(self.columns[name]) for name in self.schema}
        data[self.target] = self.y.copy()
        return pd.DataFrame(data)


def _is_categorical_dtype(col: pd.Series) -> bool:
    return (
        isinstance(col.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(col.dtype)
        or pd.api.types.is_object_dtype(col.dtype)
        or pd.api.types.is_string_dtype(col.dtype)
    )


def sample_split(df: pd.DataFrame, test_size: float | int, *, seed: int) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Seeded train/test split of a DataFrame.

    ``test_size`` is a fraction or a record count, as in
    ``sklearn.model_selection.train_test_split``.  Records with a missing
    target are *not* removed here; the training half is cleaned by
    :meth:`Dataset.from_frame` and the held-out half by the metrics helpers.
    """
    train, test = train_test_split(df, test_size=test_size, random_state=seed, shuffle=True)
    return train, test
