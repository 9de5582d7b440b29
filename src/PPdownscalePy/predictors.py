# src/PPdownscalePy/predictors.py
# SPDX-License-Identifier: MIT
"""
Predictor preparation: from (standardized) predictor grids to design matrices.

The design matrix is either the flattened raw fields or a set of principal
components (EOFs). Principal components are always fitted on the training
grid by :func:`prepare_data` and re-used, never refitted, by
:func:`prepare_new_data`. Standardization is done beforehand with
:func:`PPdownscalePy.grid.scale_grid` using the training grid as base.

Column naming
-------------
- raw fields: ``"<variable>@<point>"``
- per-variable PCs: ``"<variable>_PC<k>"``
- joint PCs over the combined variables: ``"COMBINED_PC<k>"``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from .errors import ConfigurationError
from .grid import as_frame, check_temporal_consistency, get_var_names

COMBINED = "COMBINED"

__all__ = [
    "COMBINED",
    "SpatialPredictors",
    "DesignMatrix",
    "spatial_predictors_from_n_pcs",
    "as_predictor_grid",
    "prepare_data",
    "prepare_new_data",
]


@dataclass(frozen=True)
class SpatialPredictors:
    """Principal-component layout of the design matrix.

    Attributes
    ----------
    n :
        Number of PCs retained per individual variable.
    combined :
        Number of PCs computed jointly over ``which_combine``
        (``None`` disables the joint PCA).
    which_combine :
        Variables pooled in the joint PCA.
    """

    n: Dict[str, int]
    combined: Optional[int] = None
    which_combine: Sequence[str] = ()

    def __post_init__(self) -> None:
        for var, k in self.n.items():
            if int(k) < 1:
                raise ConfigurationError(
                    f"Number of PCs for '{var}' must be >= 1 (got {k})."
                )
        if self.combined is not None:
            if int(self.combined) < 1:
                raise ConfigurationError(
                    f"Number of combined PCs must be >= 1 (got {self.combined})."
                )
            if not self.which_combine:
                raise ConfigurationError(
                    "which_combine must list the variables of the combined PCA."
                )


def spatial_predictors_from_n_pcs(
    var_names: Sequence[str],
    n_pcs: Optional[int],
) -> Optional[SpatialPredictors]:
    """
    Default PC layout used by :func:`PPdownscalePy.core.downscale`: one PC
    per variable plus ``n_pcs`` PCs combined over all variables. ``None``
    when ``n_pcs`` is ``None`` (raw standardized fields are used).
    """
    if n_pcs is None:
        return None
    if isinstance(n_pcs, bool) or int(n_pcs) != n_pcs:
        raise ConfigurationError(f"n_pcs must be an integer (got {n_pcs!r}).")
    names = list(var_names)
    return SpatialPredictors(
        n={v: 1 for v in names},
        combined=int(n_pcs),
        which_combine=tuple(names),
    )


@dataclass
class DesignMatrix:
    """Predictors (and optionally predictand) ready for training or prediction."""

    X: pd.DataFrame
    y: Optional[pd.DataFrame]
    global_vars: List[str]
    spatial_predictors: Optional[SpatialPredictors] = None
    points: Dict[str, pd.Index] = field(default_factory=dict)
    pcas: Dict[str, PCA] = field(default_factory=dict)

    @property
    def dates(self) -> pd.DatetimeIndex:
        return self.X.index

    @property
    def values(self) -> np.ndarray:
        return np.asarray(self.X.to_numpy(copy=False), dtype=float)

    @property
    def stations(self) -> List:
        return [] if self.y is None else list(self.y.columns)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------


def as_predictor_grid(x: pd.DataFrame) -> pd.DataFrame:
    """
    Return *x* with ``(variable, point)`` columns. Flat columns are read as
    single-point variables.
    """
    g = as_frame(x)
    if not isinstance(g.columns, pd.MultiIndex):
        g.columns = pd.MultiIndex.from_tuples(
            [(c, 0) for c in g.columns], names=["variable", "point"]
        )
    return g


def _field(grid: pd.DataFrame, var: str) -> pd.DataFrame:
    return grid.xs(var, axis=1, level=0, drop_level=True)


def _check_finite(values: np.ndarray, what: str) -> None:
    if not np.all(np.isfinite(values)):
        raise ValueError(
            f"{what} contains missing or non-finite values; fill or drop them first."
        )


def _resolve_global_vars(grid: pd.DataFrame, global_vars: Optional[Sequence[str]]) -> List[str]:
    available = get_var_names(grid)
    if global_vars is None:
        return available
    names = [global_vars] if isinstance(global_vars, str) else list(global_vars)
    unknown = [v for v in names if v not in available]
    if unknown:
        raise ConfigurationError(
            f"Variables {unknown} are not in the predictor grid. Available: {available}"
        )
    return names


def _check_spatial_vars(sp: SpatialPredictors, global_vars: Sequence[str]) -> None:
    declared = set(sp.n)
    if declared != set(global_vars):
        missing = sorted(set(global_vars) - declared)
        extra = sorted(declared - set(global_vars))
        raise ConfigurationError(
            "Spatial predictors do not match the predictor variables "
            f"(missing: {missing}, unknown: {extra})."
        )
    extra = sorted(set(sp.which_combine) - set(global_vars))
    if extra:
        raise ConfigurationError(
            f"Combined variables {extra} are not in the predictor grid."
        )


def _fit_pca(values: np.ndarray, n: int, label: str) -> PCA:
    max_n = min(values.shape)
    if n > max_n:
        raise ConfigurationError(
            f"Requested {n} PCs for '{label}' but at most {max_n} are available."
        )
    return PCA(n_components=int(n)).fit(values)


def _scores(pca: PCA, values: np.ndarray, label: str, index: pd.Index) -> pd.DataFrame:
    cols = [f"{label}_PC{k + 1}" for k in range(pca.n_components_)]
    return pd.DataFrame(pca.transform(values), index=index, columns=cols)


def _flatten_raw(grid: pd.DataFrame, global_vars: Sequence[str]) -> pd.DataFrame:
    sub = pd.concat([_field(grid, v) for v in global_vars], axis=1, keys=global_vars)
    sub.columns = [f"{v}@{p}" for v, p in sub.columns]
    return sub


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------


def prepare_data(
    x: pd.DataFrame,
    y: Optional[pd.DataFrame] = None,
    global_vars: Optional[Sequence[str]] = None,
    spatial_predictors: Optional[SpatialPredictors] = None,
) -> DesignMatrix:
    """
    Build the training design matrix bound to the predictand *y*.

    Parameters
    ----------
    x : DataFrame
        Standardized predictor grid.
    y : DataFrame or Series, optional
        Predictand with the same reference dates as *x*.
    global_vars : sequence of str, optional
        Variables to use (default: all variables of *x*).
    spatial_predictors : SpatialPredictors, optional
        PC layout. ``None`` keeps the raw fields.

    Returns
    -------
    DesignMatrix
    """
    grid = as_predictor_grid(x)
    yy = None
    if y is not None:
        yy = as_frame(y)
        check_temporal_consistency(grid, yy)
        yy.index = grid.index

    gvars = _resolve_global_vars(grid, global_vars)
    points = {v: _field(grid, v).columns for v in gvars}

    if spatial_predictors is None:
        X = _flatten_raw(grid, gvars)
        _check_finite(X.to_numpy(dtype=float), "Predictor grid")
        return DesignMatrix(X=X, y=yy, global_vars=gvars, points=points)

    _check_spatial_vars(spatial_predictors, gvars)
    pcas: Dict[str, PCA] = {}
    blocks: List[pd.DataFrame] = []
    for var in gvars:
        vals = _field(grid, var).to_numpy(dtype=float)
        _check_finite(vals, f"Predictor '{var}'")
        pcas[var] = _fit_pca(vals, int(spatial_predictors.n[var]), var)
        blocks.append(_scores(pcas[var], vals, var, grid.index))

    if spatial_predictors.combined is not None:
        combo = list(spatial_predictors.which_combine)
        vals = np.hstack([_field(grid, v).to_numpy(dtype=float) for v in combo])
        pcas[COMBINED] = _fit_pca(vals, int(spatial_predictors.combined), COMBINED)
        blocks.append(_scores(pcas[COMBINED], vals, COMBINED, grid.index))

    return DesignMatrix(
        X=pd.concat(blocks, axis=1),
        y=yy,
        global_vars=gvars,
        spatial_predictors=spatial_predictors,
        points=points,
        pcas=pcas,
    )


def prepare_new_data(newdata: pd.DataFrame, design: DesignMatrix) -> DesignMatrix:
    """
    Project *newdata* onto the predictor space of a training design.

    Uses the training variables, grid points and fitted PCs of *design*;
    nothing is refitted. *newdata* must already be standardized with the
    training grid as base.
    """
    grid = as_predictor_grid(newdata)
    available = get_var_names(grid)
    missing = [v for v in design.global_vars if v not in available]
    if missing:
        raise ConfigurationError(
            f"newdata lacks the training variables {missing}."
        )
    for var in design.global_vars:
        if not _field(grid, var).columns.equals(design.points[var]):
            raise ConfigurationError(
                f"Grid points of '{var}' in newdata differ from the training grid."
            )

    sp = design.spatial_predictors
    if sp is None:
        X = _flatten_raw(grid, design.global_vars)
        _check_finite(X.to_numpy(dtype=float), "newdata")
    else:
        blocks = []
        for var in design.global_vars:
            vals = _field(grid, var).to_numpy(dtype=float)
            _check_finite(vals, f"newdata '{var}'")
            blocks.append(_scores(design.pcas[var], vals, var, grid.index))
        if sp.combined is not None:
            vals = np.hstack([_field(grid, v).to_numpy(dtype=float) for v in sp.which_combine])
            blocks.append(_scores(design.pcas[COMBINED], vals, COMBINED, grid.index))
        X = pd.concat(blocks, axis=1)

    return DesignMatrix(
        X=X,
        y=None,
        global_vars=list(design.global_vars),
        spatial_predictors=sp,
        points=dict(design.points),
        pcas=design.pcas,
    )
