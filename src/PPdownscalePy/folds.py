# src/PPdownscalePy/folds.py
# SPDX-License-Identifier: MIT
"""
Chronological fold planning for cross-validation.

A fold plan turns a sequence of reference dates into folds (integer
positions into that sequence) and into ``(train, test)`` splits. Every
plan keeps the rows of a fold in chronological order.

Plans
-----
- :class:`NoFolds`: no resampling; one split training and predicting on
  the whole period.
- :class:`LeaveOneYearOut`: one fold per calendar year.
- :class:`KFold`: ``count`` contiguous folds of (almost) equal size.
- :class:`KFoldFraction`: a single chronological holdout: the first
  ``fraction`` of the period trains, the remainder is tested.
- :class:`ExplicitFolds`: user supplied year sets, in the order given.

Use :func:`resolve_fold_plan` to map the ``cross_val`` / ``folds``
arguments of :func:`PPdownscalePy.core.downscale` to a plan.
"""

from __future__ import annotations

import numbers
import warnings
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError

Split = Tuple[np.ndarray, np.ndarray]

__all__ = [
    "NoFolds",
    "LeaveOneYearOut",
    "KFold",
    "KFoldFraction",
    "ExplicitFolds",
    "FoldPlan",
    "resolve_fold_plan",
    "fold_years",
]


def _dates(dates: Iterable) -> pd.DatetimeIndex:
    idx = pd.DatetimeIndex(pd.to_datetime(dates))
    if len(idx) == 0:
        raise ValueError("Cannot plan folds on an empty period.")
    return idx


def _chronological(dates: pd.DatetimeIndex) -> np.ndarray:
    return np.argsort(dates.values, kind="stable")


def _leave_fold_out(folds: List[np.ndarray], n: int) -> List[Split]:
    splits = []
    for test in folds:
        train = np.setdiff1d(np.arange(n), test)
        splits.append((train, test))
    return splits


@dataclass(frozen=True)
class NoFolds:
    """Train and predict on the full period."""

    def folds(self, dates) -> List[np.ndarray]:
        return [_chronological(_dates(dates))]

    def splits(self, dates) -> List[Split]:
        full = self.folds(dates)[0]
        return [(full, full)]


@dataclass(frozen=True)
class LeaveOneYearOut:
    """One fold per calendar year, visited in chronological order."""

    def folds(self, dates) -> List[np.ndarray]:
        idx = _dates(dates)
        order = _chronological(idx)
        years = np.asarray(idx.year)[order]
        return [order[years == yr] for yr in np.unique(years)]

    def splits(self, dates) -> List[Split]:
        idx = _dates(dates)
        folds = self.folds(idx)
        if len(folds) < 2:
            raise ConfigurationError(
                "Leave-one-year-out needs at least two distinct years."
            )
        return _leave_fold_out(folds, len(idx))


@dataclass(frozen=True)
class KFold:
    """``count`` contiguous chronological folds whose sizes differ by at most one."""

    count: int

    def __post_init__(self) -> None:
        if self.count < 2:
            raise ConfigurationError(f"k-fold needs at least 2 folds (got {self.count}).")

    def folds(self, dates) -> List[np.ndarray]:
        idx = _dates(dates)
        if self.count > len(idx):
            raise ConfigurationError(
                f"Cannot split {len(idx)} time steps into {self.count} folds."
            )
        return list(np.array_split(_chronological(idx), self.count))

    def splits(self, dates) -> List[Split]:
        idx = _dates(dates)
        return _leave_fold_out(self.folds(idx), len(idx))


@dataclass(frozen=True)
class KFoldFraction:
    """Two chronological folds: the first ``fraction`` trains, the rest tests."""

    fraction: float

    def __post_init__(self) -> None:
        if not 0.0 < self.fraction < 1.0:
            raise ConfigurationError(
                f"Fold fraction must lie in (0, 1) (got {self.fraction})."
            )

    def folds(self, dates) -> List[np.ndarray]:
        order = _chronological(_dates(dates))
        n_train = int(round(self.fraction * len(order)))
        if n_train == 0 or n_train == len(order):
            raise ConfigurationError(
                f"Fraction {self.fraction} leaves an empty training or test "
                f"period on {len(order)} time steps."
            )
        return [order[:n_train], order[n_train:]]

    def splits(self, dates) -> List[Split]:
        train, test = self.folds(dates)
        return [(train, test)]


@dataclass(frozen=True)
class ExplicitFolds:
    """Caller supplied folds, each a set of calendar years."""

    year_sets: Tuple[Tuple[int, ...], ...]

    def __post_init__(self) -> None:
        if len(self.year_sets) < 2:
            raise ConfigurationError("At least two folds are required.")
        seen = set()
        for k, years in enumerate(self.year_sets):
            if not years:
                raise ConfigurationError(f"Fold {k} is empty.")
            overlap = seen.intersection(years)
            if overlap:
                raise ConfigurationError(
                    f"Years {sorted(overlap)} appear in more than one fold."
                )
            seen.update(years)

    def folds(self, dates) -> List[np.ndarray]:
        idx = _dates(dates)
        order = _chronological(idx)
        years = np.asarray(idx.year)[order]
        out = []
        for k, ys in enumerate(self.year_sets):
            pos = order[np.isin(years, list(ys))]
            if pos.size == 0:
                raise ConfigurationError(
                    f"Fold {k} (years {list(ys)}) matches no date of the series."
                )
            out.append(pos)
        return out

    def splits(self, dates) -> List[Split]:
        idx = _dates(dates)
        return _leave_fold_out(self.folds(idx), len(idx))


FoldPlan = Union[NoFolds, LeaveOneYearOut, KFold, KFoldFraction, ExplicitFolds]
_PLAN_TYPES = (NoFolds, LeaveOneYearOut, KFold, KFoldFraction, ExplicitFolds)


def _explicit(folds: Sequence) -> ExplicitFolds:
    year_sets = []
    for fold in folds:
        if isinstance(fold, (str, bytes)) or not isinstance(fold, Iterable):
            raise ConfigurationError(
                "Explicit folds must be a list of year lists, "
                "e.g. [[1985, 1986], [1987, 1988]]."
            )
        year_sets.append(tuple(int(y) for y in fold))
    return ExplicitFolds(tuple(year_sets))


def resolve_fold_plan(cross_val: Union[str, FoldPlan] = "none", folds=None) -> FoldPlan:
    """
    Resolve the ``cross_val`` / ``folds`` pair into a fold plan.

    Parameters
    ----------
    cross_val : {"none", "loocv", "kfold"} or FoldPlan
        Resampling strategy. A plan instance is returned unchanged.
    folds : int, float, list of lists, optional
        Only used with ``"kfold"``: an integer ``>= 2`` (number of folds), a
        fraction in ``(0, 1)`` (training share of a chronological holdout)
        or a list of year lists (explicit folds).

    Raises
    ------
    ConfigurationError
        Unknown ``cross_val``, ``"kfold"`` without ``folds`` or a malformed
        ``folds`` value.
    """
    if isinstance(cross_val, _PLAN_TYPES):
        return cross_val

    if cross_val in ("none", "loocv"):
        if folds is not None:
            warnings.warn(
                f"'folds' is ignored when cross_val='{cross_val}'.",
                UserWarning,
                stacklevel=2,
            )
        return NoFolds() if cross_val == "none" else LeaveOneYearOut()

    if cross_val != "kfold":
        raise ConfigurationError(
            f"Unknown cross_val '{cross_val}'. Use 'none', 'loocv' or 'kfold'."
        )

    if folds is None:
        raise ConfigurationError(
            "Please specify the number of folds with the parameter: folds."
        )
    if isinstance(folds, bool):
        raise ConfigurationError("folds must be a number or a list of year lists.")
    if isinstance(folds, numbers.Real):
        value = float(folds)
        if 0.0 < value < 1.0:
            return KFoldFraction(value)
        if value.is_integer():
            return KFold(int(value))
        raise ConfigurationError(
            f"folds must be an integer >= 2 or a fraction in (0, 1) (got {folds})."
        )
    if isinstance(folds, (list, tuple)):
        return _explicit(folds)
    raise ConfigurationError(
        f"Unsupported folds specification of type {type(folds).__name__}."
    )


def fold_years(plan: FoldPlan, dates) -> List[List[int]]:
    """Calendar years covered by each fold of *plan*."""
    idx = _dates(dates)
    years = np.asarray(idx.year)
    return [sorted({int(y) for y in years[f]}) for f in plan.folds(idx)]
