# src/PPdownscalePy/core.py
# SPDX-License-Identifier: MIT
"""
Perfect-prog downscaling workflow.

:func:`downscale` is the single entry point: it validates the inputs,
resolves the method and the resampling strategy, and runs the
train/predict cycle either once (``cross_val="none"``) or once per fold
through :func:`downscale_cv`.

Each train/predict cycle is self-contained: predictors are standardized
with statistics of the training period only, principal components are
fitted on the training period only, and the fitted state never leaves the
cycle. Folds can therefore run on separate workers (``n_jobs``); results
are reassembled in fold order and returned chronologically.

For ``method="glm"`` the predictand is treated as precipitation: an
occurrence GLM (binomial/logit) and an amount GLM (Gamma/log, fitted on
wet days only) are trained and their predictions multiplied, see
:mod:`PPdownscalePy.occurrence`.
"""

from __future__ import annotations

import contextlib
import dataclasses
import time
import warnings
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.exceptions import ConvergenceWarning
from tqdm.auto import tqdm

from .errors import ConfigurationError
from .folds import FoldPlan, NoFolds, fold_years, resolve_fold_plan
from .grid import (
    as_frame,
    check_temporal_consistency,
    get_ref_dates,
    get_var_names,
    scale_grid,
    subset_grid,
)
from .methods import Analogs, LM, TwoStage, downscale_predict, downscale_train, resolve_method
from .occurrence import combine_occurrence_amount, split_occurrence_amount
from .predictors import (
    SpatialPredictors,
    as_predictor_grid,
    prepare_data,
    prepare_new_data,
    spatial_predictors_from_n_pcs,
)

__all__ = ["downscale", "downscale_cv", "train_predict", "set_warning_policy"]


# ---------------------------------------------------------------------
# Warning policy
# ---------------------------------------------------------------------


def set_warning_policy(silence: bool = True) -> None:
    """
    Configure the process-wide warning policy.

    Not called on import: every train/predict cycle already runs under
    :func:`_quiet_fits`. Call this explicitly to reset the global filters.

    Parameters
    ----------
    silence : bool
        If ``True`` (default), silence pandas/sklearn FutureWarnings and the
        ConvergenceWarning of scikit-learn GLM solvers, which are frequent
        on short training folds.
    """
    warnings.resetwarnings()
    if silence:
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=ConvergenceWarning)


@contextlib.contextmanager
def _quiet_fits():
    """Silence FutureWarning and ConvergenceWarning for the enclosed block only."""
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        yield


# ---------------------------------------------------------------------
# One train/predict cycle
# ---------------------------------------------------------------------


def train_predict(
    method: Union[Analogs, LM, TwoStage],
    x_train: pd.DataFrame,
    y_train: pd.DataFrame,
    x_test: pd.DataFrame,
    *,
    spatial_predictors: Optional[SpatialPredictors] = None,
    wet_threshold: float = 0.1,
    occurrence_train: Optional[pd.DataFrame] = None,
    seed: Optional[np.random.SeedSequence] = None,
) -> pd.DataFrame:
    """
    Standardize, prepare, train and predict for one training/test period.

    Parameters
    ----------
    method : Analogs, LM or TwoStage
        Resolved downscaling method.
    x_train, y_train : DataFrame
        Training predictors and predictand (same dates). For
        :class:`TwoStage` ``y_train`` is the amount series.
    x_test : DataFrame
        Predictors to predict for.
    spatial_predictors : SpatialPredictors, optional
        PC layout; ``None`` uses the raw standardized fields.
    wet_threshold : float
        Final wet-day threshold (simulated precipitation only).
    occurrence_train : DataFrame, optional
        Training occurrence series; required for :class:`TwoStage`.
    seed : numpy.random.SeedSequence, optional
        Seed for simulated draws.

    Returns
    -------
    DataFrame
        Prediction indexed by the dates of ``x_test``.
    """
    with _quiet_fits():
        return _train_predict(
            method,
            x_train,
            y_train,
            x_test,
            spatial_predictors=spatial_predictors,
            wet_threshold=wet_threshold,
            occurrence_train=occurrence_train,
            seed=seed,
        )


def _train_predict(
    method,
    x_train: pd.DataFrame,
    y_train: pd.DataFrame,
    x_test: pd.DataFrame,
    *,
    spatial_predictors: Optional[SpatialPredictors],
    wet_threshold: float,
    occurrence_train: Optional[pd.DataFrame],
    seed: Optional[np.random.SeedSequence],
) -> pd.DataFrame:
    newdata = scale_grid(x_test, base=x_train, type="standardize")
    x_std = scale_grid(x_train, base=x_train, type="standardize")
    design_train = prepare_data(
        x_std, y_train, global_vars=get_var_names(x_std), spatial_predictors=spatial_predictors
    )
    design_test = prepare_new_data(newdata, design_train)
    rng = np.random.default_rng(seed)

    if not isinstance(method, TwoStage):
        model = downscale_train(design_train, method)
        return downscale_predict(design_test, model, rng=rng)

    if occurrence_train is None:
        raise ConfigurationError("The occurrence series is required for the glm method.")

    # amounts
    model_amount = downscale_train(design_train, method.amount)
    yp_amount = downscale_predict(design_test, model_amount, rng=rng)

    # occurrence (same predictors, binary predictand)
    occ = as_frame(occurrence_train).set_axis(design_train.dates)
    design_occ = dataclasses.replace(design_train, y=occ)
    model_occ = downscale_train(design_occ, method.occurrence)
    yp_occ = downscale_predict(design_test, model_occ, rng=rng)

    return combine_occurrence_amount(
        yp_occ,
        yp_amount,
        simulate=method.simulate,
        wet_threshold=wet_threshold,
        ref_obs=occ,
    )


# ---------------------------------------------------------------------
# Cross-validation
# ---------------------------------------------------------------------


def _run_split(
    method,
    x: pd.DataFrame,
    y: pd.DataFrame,
    occurrence: Optional[pd.DataFrame],
    train: np.ndarray,
    test: np.ndarray,
    spatial_predictors: Optional[SpatialPredictors],
    wet_threshold: float,
    seed: np.random.SeedSequence,
) -> pd.DataFrame:
    occ_train = None if occurrence is None else subset_grid(occurrence, positions=train)
    return train_predict(
        method,
        subset_grid(x, positions=train),
        subset_grid(y, positions=train),
        subset_grid(x, positions=test),
        spatial_predictors=spatial_predictors,
        wet_threshold=wet_threshold,
        occurrence_train=occ_train,
        seed=seed,
    )


def downscale_cv(
    x: pd.DataFrame,
    y: pd.DataFrame,
    method: Union[Analogs, LM, TwoStage],
    plan: FoldPlan,
    *,
    spatial_predictors: Optional[SpatialPredictors] = None,
    occurrence: Optional[pd.DataFrame] = None,
    wet_threshold: float = 0.1,
    random_state: Optional[int] = None,
    n_jobs: int = 1,
    show_progress: bool = False,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Run one train/predict cycle per fold of *plan* and reassemble the
    held-out predictions.

    Parameters
    ----------
    x, y : DataFrame
        Predictor grid and predictand with identical dates.
    method : Analogs, LM or TwoStage
        Resolved downscaling method.
    plan : FoldPlan
        Resampling plan (see :mod:`PPdownscalePy.folds`).
    spatial_predictors : SpatialPredictors, optional
        PC layout, fitted independently in every training fold.
    occurrence : DataFrame, optional
        Occurrence series (required by :class:`TwoStage`, where *y* is the
        amount series).
    wet_threshold : float
        Final wet-day threshold for simulated precipitation.
    random_state : int, optional
        Seed of the simulated draws (one child stream per fold).
    n_jobs : int
        Number of joblib workers; ``1`` runs sequentially.
    show_progress : bool
        Show a tqdm progress bar over folds (sequential runs only).
    verbose : bool
        Print one status line per fold.

    Returns
    -------
    DataFrame
        Predictions for every tested date, in chronological order.
    """
    x = as_predictor_grid(x)
    y = as_frame(y)
    check_temporal_consistency(x, y)
    if occurrence is not None:
        occurrence = as_frame(occurrence)
        check_temporal_consistency(x, occurrence)

    dates = get_ref_dates(x)
    splits = plan.splits(dates)
    seeds = np.random.SeedSequence(random_state).spawn(len(splits))

    if verbose:
        years = fold_years(plan, dates)
        print(
            f"[downscale-cv] {type(plan).__name__}: {len(splits)} split(s), "
            f"folds by year: {years}"
        )

    t0 = time.time()
    if n_jobs == 1:
        it = enumerate(splits)
        if show_progress:
            it = tqdm(it, total=len(splits), desc="Cross-validation", unit="fold")
        parts: List[pd.DataFrame] = []
        for k, (train, test) in it:
            parts.append(
                _run_split(method, x, y, occurrence, train, test,
                           spatial_predictors, wet_threshold, seeds[k])
            )
            if verbose:
                print(
                    f"[fold {k + 1}/{len(splits)}] train={len(train)} test={len(test)} "
                    f"({time.time() - t0:.1f}s)"
                )
    else:
        parts = Parallel(n_jobs=n_jobs)(
            delayed(_run_split)(method, x, y, occurrence, train, test,
                                spatial_predictors, wet_threshold, seeds[k])
            for k, (train, test) in enumerate(splits)
        )

    return pd.concat(parts, axis=0).sort_index(kind="stable")


# ---------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------


def _restore_index(pred: pd.DataFrame, normalized: pd.Index, original: pd.Index) -> pd.DataFrame:
    """Map the normalized dates of *pred* back onto the caller's index labels."""
    if normalized.equals(original):
        return pred
    pos = normalized.get_indexer(pred.index)
    return pred.set_axis(original[pos])


def downscale(
    y: Union[pd.DataFrame, pd.Series],
    x: pd.DataFrame,
    newdata: Optional[pd.DataFrame],
    *,
    method: str = "analogs",
    simulate: bool = False,
    n_analogs: int = 1,
    sel_fun: str = "mean",
    wet_threshold: float = 0.1,
    n_pcs: Optional[int] = None,
    cross_val: Union[str, FoldPlan] = "none",
    folds: Optional[Union[int, float, Sequence[Sequence[int]]]] = None,
    random_state: Optional[int] = None,
    n_jobs: int = 1,
    show_progress: bool = False,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Perfect-prog downscaling of *y* from the predictor grid *x*.

    Parameters
    ----------
    y : DataFrame or Series
        Observed predictand (one column per station).
    x : DataFrame
        Predictor grid with ``(variable, point)`` columns and the same
        reference dates as *y*.
    newdata : DataFrame or None
        Predictors to downscale when ``cross_val="none"``. Pass *x* again
        to reproduce the training period. Ignored with cross-validation.
    method : {"analogs", "glm", "lm"}
        Downscaling method. ``"glm"`` is meant for precipitation
        (occurrence + amount GLMs).
    simulate : bool
        Draw from the fitted GLM distributions instead of returning their
        conditional means (``"glm"`` only).
    n_analogs : int
        Number of analogs (``"analogs"`` only).
    sel_fun : {"mean", "wmean", "max", "min", "median"}
        Aggregation of several analogs. Ignored when ``n_analogs == 1``.
    wet_threshold : float
        Precipitation amount at or below which a day is dry.
    n_pcs : int, optional
        Number of combined principal components used as predictors (plus
        one PC per variable). ``None`` uses the raw standardized fields.
    cross_val : {"none", "loocv", "kfold"} or FoldPlan
        Resampling strategy; ``"loocv"`` leaves one year out.
    folds : int, float or list of year lists, optional
        Fold specification for ``"kfold"`` (see
        :func:`PPdownscalePy.folds.resolve_fold_plan`).
    random_state : int, optional
        Seed for simulated draws.
    n_jobs : int
        joblib workers used for cross-validation folds.
    show_progress, verbose : bool
        Progress bar / status lines.

    Returns
    -------
    DataFrame
        Prediction with the columns of *y*, indexed by the dates of
        *newdata* (no cross-validation) or by the tested dates in
        chronological order (cross-validation).

    Raises
    ------
    DateMismatchError
        If *x* and *y* do not share the same dates.
    ConfigurationError
        Unknown method, malformed fold specification, missing *newdata*,
        or predictor/variable mismatches.
    """
    check_temporal_consistency(x, y)
    newdata_is_x = newdata is x
    x_index = x.index

    strategy = resolve_method(
        method,
        simulate=simulate,
        n_analogs=n_analogs,
        sel_fun=sel_fun,
        random_state=random_state,
    )
    plan = resolve_fold_plan(cross_val, folds)

    x = as_predictor_grid(x)
    y = as_frame(y).set_axis(x.index)
    spatial_predictors = spatial_predictors_from_n_pcs(get_var_names(x), n_pcs)

    occurrence = None
    if isinstance(strategy, TwoStage):
        occurrence, y = split_occurrence_amount(y, wet_threshold=wet_threshold, simulate=simulate)

    if verbose:
        print(
            f"[downscale] method={method} simulate={simulate} "
            f"cross_val={type(plan).__name__} n_pcs={n_pcs} "
            f"({len(x)} days, {y.shape[1]} station(s))"
        )

    if isinstance(plan, NoFolds):
        if newdata is None:
            raise ConfigurationError(
                "newdata is required without cross-validation; pass x to predict the training period."
            )
        seed = np.random.SeedSequence(random_state)
        pred = train_predict(
            strategy,
            x,
            y,
            as_predictor_grid(newdata),
            spatial_predictors=spatial_predictors,
            wet_threshold=wet_threshold,
            occurrence_train=occurrence,
            seed=seed,
        )
        # predictions follow the rows of newdata; keep its own index (and timezone)
        return pred.set_axis(newdata.index)

    if newdata is not None and not newdata_is_x:
        warnings.warn(
            "newdata is ignored when cross-validating.", UserWarning, stacklevel=2
        )
    pred = downscale_cv(
        x,
        y,
        strategy,
        plan,
        spatial_predictors=spatial_predictors,
        occurrence=occurrence,
        wet_threshold=wet_threshold,
        random_state=random_state,
        n_jobs=n_jobs,
        show_progress=show_progress,
        verbose=verbose,
    )
    return _restore_index(pred, x.index, x_index)
