# src/PPdownscalePy/grid.py
# =============================================================================
# MIT License
#
# (c) 2025 The PPdownscalePy authors.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN
# THE SOFTWARE.
# =============================================================================
"""
Grid and series helpers.

Predictor fields and predictand series are plain pandas objects:

- A **predictor grid** is a :class:`pandas.DataFrame` indexed by a
  ``DatetimeIndex`` with two-level columns ``(variable, point)``. Use
  :func:`make_multi_grid` to assemble one from per-variable tables.
- A **predictand** is a :class:`pandas.DataFrame` indexed by a
  ``DatetimeIndex`` with one column per station. A :class:`pandas.Series`
  is promoted to a one-column frame by :func:`as_frame`.

All helpers return new objects; inputs are never modified in place.

Main entry points
-----------------
- :func:`get_ref_dates`, :func:`get_var_names`, :func:`get_years`
- :func:`check_temporal_consistency`, :func:`get_temporal_intersection`
- :func:`scale_grid`
- :func:`binary_grid`
- :func:`grid_arithmetics`
- :func:`subset_grid`
"""

from __future__ import annotations

import operator as _operator
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from pandas.api.types import DatetimeTZDtype

from .errors import ConfigurationError, DateMismatchError

GridLike = Union[pd.DataFrame, pd.Series]

__all__ = [
    "make_multi_grid",
    "as_frame",
    "get_ref_dates",
    "get_var_names",
    "get_years",
    "check_temporal_consistency",
    "get_temporal_intersection",
    "scale_grid",
    "binary_grid",
    "grid_arithmetics",
    "subset_grid",
]

_OPERATORS = {
    "+": _operator.add,
    "-": _operator.sub,
    "*": _operator.mul,
    "/": _operator.truediv,
}


# ---------------------------------------------------------------------
# Construction / normalisation
# ---------------------------------------------------------------------


def _normalize_index(index: pd.Index) -> pd.DatetimeIndex:
    """Return a timezone-naive ``DatetimeIndex`` or raise ``ValueError``."""
    if not isinstance(index, pd.DatetimeIndex):
        try:
            index = pd.DatetimeIndex(pd.to_datetime(index))
        except (TypeError, ValueError) as e:
            raise ValueError("Grid index must be convertible to datetimes.") from e
    if isinstance(index.dtype, DatetimeTZDtype):
        index = index.tz_localize(None)
    return index


def as_frame(grid: GridLike) -> pd.DataFrame:
    """
    Return a copy of *grid* as a DataFrame with a timezone-naive
    ``DatetimeIndex``. A Series becomes a single-column frame.
    """
    if isinstance(grid, pd.Series):
        name = grid.name if grid.name is not None else "y"
        out = grid.to_frame(name=name)
    elif isinstance(grid, pd.DataFrame):
        out = grid.copy()
    else:
        raise TypeError(
            f"Expected a pandas DataFrame or Series, got {type(grid).__name__}."
        )
    out.index = _normalize_index(out.index)
    return out


def make_multi_grid(fields: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Combine per-variable fields into a single predictor grid.

    Parameters
    ----------
    fields : dict
        Mapping ``variable -> DataFrame``. Each frame is indexed by date and
        has one column per grid point. All frames must share the same dates.

    Returns
    -------
    DataFrame
        Columns are a ``MultiIndex`` with levels ``("variable", "point")``,
        variables in the order given.
    """
    if not fields:
        raise ConfigurationError("At least one predictor variable is required.")

    parts = []
    ref = None
    for var, df in fields.items():
        f = as_frame(df)
        if ref is None:
            ref = f.index
        elif not f.index.equals(ref):
            raise DateMismatchError(
                f"Dates of variable '{var}' differ from the first variable."
            )
        f.columns = pd.MultiIndex.from_product(
            [[var], list(f.columns)], names=["variable", "point"]
        )
        parts.append(f)
    return pd.concat(parts, axis=1)


# ---------------------------------------------------------------------
# Metadata accessors
# ---------------------------------------------------------------------


def get_ref_dates(grid: GridLike) -> pd.DatetimeIndex:
    """Reference dates of *grid*, timezone-naive and normalised to days."""
    return _normalize_index(grid.index).normalize()


def get_var_names(grid: pd.DataFrame) -> List[str]:
    """
    Variable names of a predictor grid, in column order.

    For frames with flat columns the column labels themselves are returned.
    """
    if isinstance(grid.columns, pd.MultiIndex):
        return list(dict.fromkeys(grid.columns.get_level_values(0)))
    return list(grid.columns)


def get_years(grid: GridLike) -> np.ndarray:
    """Calendar year of every time step of *grid*."""
    return np.asarray(get_ref_dates(grid).year, dtype=int)


def check_temporal_consistency(x: GridLike, y: GridLike) -> None:
    """
    Ensure *x* and *y* share the very same reference dates.

    Raises
    ------
    DateMismatchError
        If the dates differ in length or value. No automatic alignment is
        attempted.
    """
    dx = get_ref_dates(x)
    dy = get_ref_dates(y)
    if len(dx) != len(dy) or not dx.equals(dy):
        raise DateMismatchError(
            "Dates of x and y do not match, please align them first "
            "(e.g. with get_temporal_intersection)."
        )


def get_temporal_intersection(
    obs: GridLike,
    prd: GridLike,
    which: str = "obs",
) -> pd.DataFrame:
    """
    Restrict *obs* or *prd* (``which``) to the dates both have in common.
    """
    if which not in ("obs", "prd"):
        raise ConfigurationError("which must be 'obs' or 'prd'.")
    o = as_frame(obs)
    p = as_frame(prd)
    common = get_ref_dates(o).intersection(get_ref_dates(p))
    if len(common) == 0:
        raise DateMismatchError("obs and prd have no dates in common.")
    target = o if which == "obs" else p
    keep = get_ref_dates(target).isin(common)
    return target.loc[keep].copy()


# ---------------------------------------------------------------------
# Scaling
# ---------------------------------------------------------------------


def scale_grid(
    grid: pd.DataFrame,
    base: Optional[pd.DataFrame] = None,
    type: str = "standardize",
) -> pd.DataFrame:
    """
    Center or standardize *grid* using statistics computed on *base*.

    Parameters
    ----------
    grid : DataFrame
        Field to transform.
    base : DataFrame, optional
        Field providing the per-column mean (and standard deviation).
        Defaults to *grid* itself. Columns must match *grid*.
    type : {"standardize", "center"}
        ``"center"`` subtracts the base mean; ``"standardize"`` also divides
        by the base standard deviation (``ddof=1``). Columns with zero or
        undefined spread are divided by one.

    Returns
    -------
    DataFrame
        Scaled copy of *grid*.
    """
    if type not in ("standardize", "center"):
        raise ConfigurationError(
            f"Unknown scaling type '{type}'. Use 'standardize' or 'center'."
        )
    g = as_frame(grid)
    b = g if base is None else as_frame(base)
    if not g.columns.equals(b.columns):
        raise ConfigurationError(
            "grid and base must have the same variables and grid points."
        )

    mu = b.mean(axis=0, skipna=True)
    out = g - mu
    if type == "standardize":
        sd = b.std(axis=0, ddof=1, skipna=True)
        sd = sd.where((sd > 0) & np.isfinite(sd), 1.0)
        out = out / sd
    return out


# ---------------------------------------------------------------------
# Binarization / masking
# ---------------------------------------------------------------------


def _calibrated_thresholds(ref_obs: pd.DataFrame, ref_pred: pd.DataFrame) -> pd.Series:
    thr = {}
    for col in ref_pred.columns:
        freq = float(np.nanmean(ref_obs[col].to_numpy(dtype=float)))
        pred = ref_pred[col].to_numpy(dtype=float)
        if not np.isfinite(freq) or np.all(np.isnan(pred)):
            thr[col] = np.nan
        elif freq <= 0.0:
            thr[col] = np.inf
        elif freq >= 1.0:
            thr[col] = -np.inf
        else:
            thr[col] = float(np.nanquantile(pred, 1.0 - freq))
    return pd.Series(thr)


def binary_grid(
    grid: GridLike,
    threshold: Optional[float] = None,
    *,
    partial: bool = False,
    ref_obs: Optional[GridLike] = None,
    ref_pred: Optional[GridLike] = None,
    fill: float = 0.0,
) -> pd.DataFrame:
    """
    Binarize or mask a series around a threshold.

    Two modes are supported:

    1. **Fixed threshold** (``threshold`` given). Values ``> threshold``
       become 1, the rest 0. With ``partial=True`` the wet values are kept
       verbatim and the rest replaced by ``fill`` (``0.0`` by default,
       ``np.nan`` to mark them as structurally absent).
    2. **Frequency calibration** (``ref_obs`` and ``ref_pred`` given). For
       every station the threshold is the ``1 - f`` quantile of
       ``ref_pred``, ``f`` being the frequency of ones in ``ref_obs``, so
       that the binarized series reproduces the observed event frequency.

    Missing values stay missing in both modes.
    """
    g = as_frame(grid)
    calibrate = ref_obs is not None or ref_pred is not None
    if calibrate and (ref_obs is None or ref_pred is None):
        raise ConfigurationError("ref_obs and ref_pred must be given together.")
    if calibrate and threshold is not None:
        raise ConfigurationError(
            "Use either a fixed threshold or ref_obs/ref_pred calibration, not both."
        )
    if not calibrate and threshold is None:
        raise ConfigurationError("A threshold (or ref_obs/ref_pred) is required.")

    if calibrate:
        ro = as_frame(ref_obs)
        rp = as_frame(ref_pred)
        if set(ro.columns) != set(g.columns) or set(rp.columns) != set(g.columns):
            raise ConfigurationError(
                "ref_obs and ref_pred must have the same stations as grid."
            )
        thr = _calibrated_thresholds(ro, rp).reindex(g.columns)
        wet = g.gt(thr, axis=1)
    else:
        wet = g > float(threshold)

    missing = g.isna()
    if partial:
        out = g.where(wet, fill)
    else:
        out = wet.astype(float)
    return out.mask(missing)


# ---------------------------------------------------------------------
# Arithmetic and subsetting
# ---------------------------------------------------------------------


def grid_arithmetics(a: GridLike, b: GridLike, operator: str = "*") -> pd.DataFrame:
    """Elementwise ``a <operator> b`` on identically indexed frames."""
    if operator not in _OPERATORS:
        raise ConfigurationError(
            f"Unknown operator '{operator}'. Use one of {sorted(_OPERATORS)}."
        )
    fa = as_frame(a)
    fb = as_frame(b)
    if not fa.index.equals(fb.index):
        raise DateMismatchError("Operands have different reference dates.")
    if not fa.columns.equals(fb.columns):
        raise ConfigurationError("Operands have different stations or grid points.")
    return _OPERATORS[operator](fa, fb)


def subset_grid(
    grid: GridLike,
    *,
    years: Optional[Iterable[int]] = None,
    var: Optional[Union[str, Sequence[str]]] = None,
    dates: Optional[Iterable] = None,
    positions: Optional[Sequence[int]] = None,
) -> pd.DataFrame:
    """
    Return a copy of *grid* restricted along time and/or variables.

    Parameters
    ----------
    years : iterable of int, optional
        Keep time steps falling in these calendar years.
    var : str or sequence of str, optional
        Keep these variables (first column level of a predictor grid, or
        plain columns of a predictand).
    dates : iterable, optional
        Keep these exact dates.
    positions : sequence of int, optional
        Keep these integer row positions (in the given order).
    """
    out = as_frame(grid)

    if positions is not None:
        out = out.iloc[np.asarray(positions, dtype=int)]
    if years is not None:
        wanted = {int(yr) for yr in years}
        out = out.loc[np.isin(get_years(out), sorted(wanted))]
    if dates is not None:
        keep = get_ref_dates(out).isin(pd.to_datetime(list(dates)).normalize())
        out = out.loc[keep]
    if var is not None:
        names = [var] if isinstance(var, str) else list(var)
        available = get_var_names(out)
        unknown = [v for v in names if v not in available]
        if unknown:
            raise ConfigurationError(
                f"Variables {unknown} not found. Available: {available}"
            )
        if isinstance(out.columns, pd.MultiIndex):
            out = out.loc[:, out.columns.get_level_values(0).isin(names)]
        else:
            out = out[names]
    return out.copy()
