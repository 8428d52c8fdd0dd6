"""
cartree.splitting
=================

Split rules and the sum-of-squares split search.

Two rule types route a record left or right:

- :class:`NumericSplit` sends a record left when ``value < threshold``.
- :class:`CategoricalSplit` sends it left when ``value`` is one of
  ``left_labels``.

Both return ``None`` from :meth:`goes_left` when the value is missing (or is a
label the split never saw), and the caller falls back on surrogate splits or
the majority direction.

The improvement of a candidate is ``SS_T - (SS_left + SS_right)``, computed as
the between-group sum of squares ``S_L^2/n_L + S_R^2/n_R - S^2/n`` on
mean-centred targets, scanning sorted values with prefix sums.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, List, Optional, Sequence, Tuple, Union

import numpy as np

from .dataset import Dataset, is_missing

# relative floor under which an improvement is treated as rounding noise
_GAIN_TOL = 1e-12


def _fmt_labels(labels) -> str:
    return ",".join(str(v) for v in sorted(labels, key=str))


# ----------------------------- Rules -----------------------------

@dataclass(frozen=True)
class NumericSplit:
    field: str
    threshold: float

    kind = "numeric"

    def goes_left(self, value: Any) -> Optional[bool]:
        if is_missing(value):
            return None
        return float(value) < self.threshold

    def left_mask(self, col: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """``(left, known)`` boolean masks over a numeric column."""
        col = np.asarray(col, dtype=float)
        known = ~np.isnan(col)
        left = np.zeros(col.shape[0], dtype=bool)
        left[known] = col[known] < self.threshold
        return left, known

    def describe(self, left: bool = True) -> str:
        op = "<" if left else ">="
        return f"{self.field}{op}{self.threshold:.6g}"


@dataclass(frozen=True)
class CategoricalSplit:
    field: str
    left_labels: FrozenSet[Any]
    right_labels: FrozenSet[Any]

    kind = "categorical"

    def goes_left(self, value: Any) -> Optional[bool]:
        if is_missing(value):
            return None
        if value in self.left_labels:
            return True
        if value in self.right_labels:
            return False
        return None

    def left_mask(self, col: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n = col.shape[0]
        left = np.zeros(n, dtype=bool)
        known = np.zeros(n, dtype=bool)
        for i, v in enumerate(col):
            d = self.goes_left(v)
            if d is not None:
                known[i] = True
                left[i] = d
        return left, known

    def describe(self, left: bool = True) -> str:
        return f"{self.field}={_fmt_labels(self.left_labels if left else self.right_labels)}"


SplitRule = Union[NumericSplit, CategoricalSplit]


@dataclass(frozen=True)
class SurrogateSplit:
    """A stand-in rule for records missing the primary split field.

    ``reverse`` flips the rule's direction.  ``agreement`` is the share of
    records (with both fields known) sent the same way as by the primary
    split, ``adjusted`` the share of the majority rule's errors it fixes.
    """

    rule: SplitRule
    reverse: bool
    agreement: float
    adjusted: float

    @property
    def field(self) -> str:
        return self.rule.field

    def goes_left(self, value: Any) -> Optional[bool]:
        d = self.rule.goes_left(value)
        if d is None:
            return None
        return d != self.reverse

    def describe(self) -> str:
        return f"{self.rule.describe(left=not self.reverse)} (agree={self.agreement:.3f}, adj={self.adjusted:.3f})"


@dataclass
class SplitCandidate:
    rule: SplitRule
    improvement: float
    left: np.ndarray      # record indices with a known value routed left
    right: np.ndarray
    missing: np.ndarray   # record indices missing the split field


# ----------------------------- Search -----------------------------

def find_best_split(ds: Dataset, indices: np.ndarray, *, min_leaf_size: int,
                    max_categories_exhaustive: int = 12) -> Optional[SplitCandidate]:
    """Best sum-of-squares split of the records at ``indices``.

    Fields are scanned in schema order and a later field must strictly beat
    the current best, so ties keep the earlier field; within a numeric field
    the smallest threshold wins.  A record missing a field takes no part in
    that field's candidates.  Only candidates leaving at least
    ``min_leaf_size`` records on each side are considered.

    Returns ``None`` when no candidate improves the sum of squares.
    """
    indices = np.asarray(indices, dtype=int)
    y_node = ds.y[indices]
    best: Optional[Tuple[float, SplitRule, str]] = None
    for name in ds.fields:
        col = ds.columns[name][indices]
        known = ~ds.missing_mask(name)[indices]
        if int(known.sum()) < 2 * min_leaf_size:
            continue
        yk = y_node[known]
        if ds.is_numeric(name):
            found = _best_numeric(name, col[known].astype(float), yk, min_leaf_size)
        else:
            found = _best_categorical(name, col[known], yk, min_leaf_size, max_categories_exhaustive)
        if found is None:
            continue
        gain, rule = found
        if best is None or gain > best[0]:
            best = (gain, rule, name)

    if best is None:
        return None
    gain, rule, name = best
    left, known = rule.left_mask(ds.columns[name][indices])
    return SplitCandidate(
        rule=rule,
        improvement=float(gain),
        left=indices[known & left],
        right=indices[known & ~left],
        missing=indices[~known],
    )


def _best_numeric(name: str, x: np.ndarray, y: np.ndarray,
                  min_leaf: int) -> Optional[Tuple[float, NumericSplit]]:
    n = x.shape[0]
    order = np.argsort(x, kind="mergesort")
    v = x[order]
    yc = y[order] - y.mean()
    csum = np.cumsum(yc)
    total = float(csum[-1])
    ss = float(np.sum(yc * yc))
    if ss <= 0.0:
        return None

    n_left = np.arange(1, n)
    n_right = n - n_left
    s_left = csum[:-1]
    s_right = total - s_left
    gain = s_left * s_left / n_left + s_right * s_right / n_right - total * total / n

    valid = (v[:-1] != v[1:]) & (n_left >= min_leaf) & (n_right >= min_leaf)
    if not valid.any():
        return None
    gain = np.where(valid, gain, -np.inf)
    i = int(np.argmax(gain))  # first maximum -> smallest threshold
    best = float(gain[i])
    if best <= _GAIN_TOL * ss:
        return None
    thr = 0.5 * (float(v[i]) + float(v[i + 1]))
    return best, NumericSplit(name, thr)


def _best_categorical(name: str, x: np.ndarray, y: np.ndarray, min_leaf: int,
                      max_exhaustive: int) -> Optional[Tuple[float, CategoricalSplit]]:
    yc = y - y.mean()
    ss = float(np.sum(yc * yc))
    if ss <= 0.0:
        return None
    labels = sorted(set(x.tolist()), key=str)
    k = len(labels)
    if k <= 1:
        return None
    pos = {lab: j for j, lab in enumerate(labels)}
    codes = np.fromiter((pos[v] for v in x), dtype=int, count=x.shape[0])
    cnt = np.bincount(codes, minlength=k).astype(float)
    sums = np.bincount(codes, weights=yc, minlength=k)
    n = float(cnt.sum())
    total = float(sums.sum())

    if k <= max_exhaustive:
        # first label always on the left; the all-left subset is excluded
        masks = np.arange((1 << (k - 1)) - 1, dtype=np.int64)
        bits = ((masks[:, None] >> np.arange(k - 1)) & 1).astype(float)
        n_left = cnt[0] + bits @ cnt[1:]
        s_left = sums[0] + bits @ sums[1:]
        members = [np.concatenate(([True], b.astype(bool))) for b in bits]
    else:
        means = sums / cnt
        ordered = np.argsort(means, kind="mergesort")
        n_left = np.cumsum(cnt[ordered])[:-1]
        s_left = np.cumsum(sums[ordered])[:-1]
        members = []
        for t in range(1, k):
            m = np.zeros(k, dtype=bool)
            m[ordered[:t]] = True
            members.append(m)

    n_right = n - n_left
    s_right = total - s_left
    valid = (n_left >= min_leaf) & (n_right >= min_leaf)
    if not valid.any():
        return None
    with np.errstate(divide="ignore", invalid="ignore"):
        gain = s_left * s_left / n_left + s_right * s_right / n_right - total * total / n
    gain = np.where(valid, gain, -np.inf)
    i = int(np.argmax(gain))
    best = float(gain[i])
    if best <= _GAIN_TOL * ss:
        return None
    m = members[i]
    left = frozenset(lab for j, lab in enumerate(labels) if m[j])
    right = frozenset(lab for j, lab in enumerate(labels) if not m[j])
    return best, CategoricalSplit(name, left, right)


# ----------------------------- Surrogates -----------------------------

def find_surrogates(ds: Dataset, indices: np.ndarray, primary: SplitRule, *,
                    max_surrogates: int) -> List[SurrogateSplit]:
    """Rules on other fields that best mimic ``primary`` at this node.

    Agreement is measured on records where both the primary and the
    candidate field are known.  Candidates that do no better than sending
    everything in the majority direction are dropped.
    """
    if max_surrogates <= 0:
        return []
    indices = np.asarray(indices, dtype=int)
    went_left, known_p = primary.left_mask(ds.columns[primary.field][indices])
    idx_p = indices[known_p]
    dir_p = went_left[known_p]

    found: List[SurrogateSplit] = []
    for name in ds.fields:
        if name == primary.field:
            continue
        known = ~ds.missing_mask(name)[idx_p]
        n = int(known.sum())
        if n < 2:
            continue
        d = dir_p[known]
        n_l = int(d.sum())
        majority = max(n_l, n - n_l)
        if majority == n:
            continue
        col = ds.columns[name][idx_p][known]
        if ds.is_numeric(name):
            cand = _surrogate_numeric(name, col.astype(float), d)
        else:
            cand = _surrogate_categorical(name, col, d, majority_left=n_l >= n - n_l)
        if cand is None:
            continue
        agree, rule, reverse = cand
        if agree <= majority:
            continue
        found.append(SurrogateSplit(
            rule=rule,
            reverse=reverse,
            agreement=agree / n,
            adjusted=(agree - majority) / (n - majority),
        ))
    # stable sort keeps schema order among equals
    found.sort(key=lambda s: (s.adjusted, s.agreement), reverse=True)
    return found[:max_surrogates]


def _surrogate_numeric(name: str, x: np.ndarray, d: np.ndarray) -> Optional[Tuple[int, NumericSplit, bool]]:
    order = np.argsort(x, kind="mergesort")
    v = x[order]
    dl = d[order].astype(int)
    cuts = np.nonzero(v[:-1] != v[1:])[0]
    if cuts.size == 0:
        return None
    left_below = np.cumsum(dl)[cuts]
    n_below = cuts + 1
    right_below = n_below - left_below
    total_left = int(dl.sum())
    right_above = (len(v) - total_left) - right_below
    left_above = total_left - left_below
    agree_fwd = left_below + right_above
    agree_rev = right_below + left_above
    i_f = int(np.argmax(agree_fwd))
    i_r = int(np.argmax(agree_rev))
    if agree_rev[i_r] > agree_fwd[i_f]:
        i, agree, reverse = i_r, int(agree_rev[i_r]), True
    else:
        i, agree, reverse = i_f, int(agree_fwd[i_f]), False
    c = int(cuts[i])
    thr = 0.5 * (float(v[c]) + float(v[c + 1]))
    return agree, NumericSplit(name, thr), reverse


def _surrogate_categorical(name: str, x: np.ndarray, d: np.ndarray,
                           majority_left: bool) -> Optional[Tuple[int, CategoricalSplit, bool]]:
    counts = {}
    for v, went_left in zip(x, d):
        c = counts.setdefault(v, [0, 0])
        c[0 if went_left else 1] += 1
    left, right = set(), set()
    agree = 0
    for lab, (n_l, n_r) in counts.items():
        if n_l > n_r or (n_l == n_r and majority_left):
            left.add(lab)
            agree += n_l
        else:
            right.add(lab)
            agree += n_r
    if not left or not right:
        return None
    return agree, CategoricalSplit(name, frozenset(left), frozenset(right)), False


# ----------------------------- Routing -----------------------------

def route_missing(surrogates: Sequence[SurrogateSplit], majority_left: bool,
                  getter: Callable[[str], Any], policy: str) -> Tuple[Optional[bool], Optional[str]]:
    """Direction for a record whose primary split value is unusable.

    ``"surrogate"`` tries each surrogate in order, then the majority
    direction; ``"majority"`` goes straight to the majority direction;
    ``"none"`` gives up.

    Returns
    -------
    (direction, how)
        ``direction`` is True for left, False for right, None when the
        record cannot be routed; ``how`` is ``"surrogate"``, ``"majority"``
        or None.
    """
    if policy == "none":
        return None, None
    if policy == "surrogate":
        for s in surrogates:
            d = s.goes_left(getter(s.field))
            if d is not None:
                return d, "surrogate"
    return majority_left, "majority"
