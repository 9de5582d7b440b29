"""
PPdownscalePy
=============

Perfect-prog statistical downscaling of station series from large-scale
predictor fields.

A predictand (e.g. daily precipitation at one or more stations) is linked
to a predictor grid (e.g. reanalysis humidity and temperature fields,
optionally reduced to principal components) with one of three methods:

- ``"analogs"``: nearest-neighbour analogs in predictor space;
- ``"glm"``: precipitation in two stages: occurrence (binomial/logit)
  and wet-day amount (Gamma/log), recombined deterministically or by
  stochastic simulation;
- ``"lm"``: ordinary least squares.

Models can be validated with chronological cross-validation
(leave-one-year-out, k contiguous folds, a train/test fraction or
explicit year folds).

Main entry points
-----------------
- :func:`downscale` (workhorse), :func:`downscale_cv`
- :func:`make_multi_grid`, :func:`get_temporal_intersection`
- :func:`resolve_fold_plan` and the fold plans in :mod:`PPdownscalePy.folds`
- :func:`resolve_method` and the methods in :mod:`PPdownscalePy.methods`
- :func:`validation_table`

Example
-------
    >>> from PPdownscalePy import downscale, make_multi_grid
    >>> x = make_multi_grid({"hus850": hus850, "ta850": ta850})
    >>> yp = downscale(y, x, x, method="analogs")
    >>> yp_cv = downscale(y, x, None, method="glm", n_pcs=10,
    ...                   cross_val="kfold",
    ...                   folds=[[1985, 1986, 1987], [1988, 1989, 1990],
    ...                          [1991, 1992, 1993]])
"""

from __future__ import annotations

# Public version (update in sync with pyproject.toml)
__version__ = "0.1.0"

from .errors import ConfigurationError, DateMismatchError

# ---------------------------------------------------------------------------
# Grid / series helpers
# ---------------------------------------------------------------------------

from .grid import (
    make_multi_grid,
    get_ref_dates,
    get_var_names,
    get_temporal_intersection,
    check_temporal_consistency,
    scale_grid,
    binary_grid,
    grid_arithmetics,
    subset_grid,
)
from .predictors import (
    SpatialPredictors,
    DesignMatrix,
    prepare_data,
    prepare_new_data,
)

# ---------------------------------------------------------------------------
# Methods, folds and workflow
# ---------------------------------------------------------------------------

from .methods import (
    Analogs,
    GLM,
    LM,
    TwoStage,
    DownscalingModel,
    resolve_method,
    downscale_train,
    downscale_predict,
)
from .folds import (
    NoFolds,
    LeaveOneYearOut,
    KFold,
    KFoldFraction,
    ExplicitFolds,
    resolve_fold_plan,
)
from .occurrence import (
    SIMULATION_WET_THRESHOLD,
    split_occurrence_amount,
    combine_occurrence_amount,
)
from .core import downscale, downscale_cv
from .metrics import regression_metrics, occurrence_metrics, validation_table

__all__ = [
    "__version__",
    "ConfigurationError",
    "DateMismatchError",
    # grids
    "make_multi_grid",
    "get_ref_dates",
    "get_var_names",
    "get_temporal_intersection",
    "check_temporal_consistency",
    "scale_grid",
    "binary_grid",
    "grid_arithmetics",
    "subset_grid",
    "SpatialPredictors",
    "DesignMatrix",
    "prepare_data",
    "prepare_new_data",
    # methods
    "Analogs",
    "GLM",
    "LM",
    "TwoStage",
    "DownscalingModel",
    "resolve_method",
    "downscale_train",
    "downscale_predict",
    # folds
    "NoFolds",
    "LeaveOneYearOut",
    "KFold",
    "KFoldFraction",
    "ExplicitFolds",
    "resolve_fold_plan",
    # precipitation
    "SIMULATION_WET_THRESHOLD",
    "split_occurrence_amount",
    "combine_occurrence_amount",
    # workflow
    "downscale",
    "downscale_cv",
    # validation
    "regression_metrics",
    "occurrence_metrics",
    "validation_table",
]
