# src/PPdownscalePy/metrics.py
# SPDX-License-Identifier: MIT
"""
Validation scores for downscaled series.

Scores compare an observed predictand with a (typically cross-validated)
prediction, station by station:

- :func:`regression_metrics`: MAE, RMSE, R² (squared Pearson r), KGE,
  NSE and mean bias.
- :func:`occurrence_metrics`: wet-day frequencies and contingency scores
  for precipitation-like variables.
- :func:`validation_table`: both of the above for every station, on daily
  values or after temporal aggregation.

Undefined scores (too few pairs, zero variance, no events) are ``np.nan``.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error

from .grid import as_frame

__all__ = [
    "kge",
    "nse",
    "regression_metrics",
    "occurrence_metrics",
    "validation_table",
]

_REGRESSION_KEYS = ("MAE", "RMSE", "R2", "KGE", "NSE", "bias")
_OCCURRENCE_KEYS = (
    "wet_freq_obs",
    "wet_freq_pred",
    "freq_ratio",
    "hit_rate",
    "false_alarm_ratio",
    "accuracy",
)

_FREQ_ALIAS = {"M": "ME", "A": "YE", "Y": "YE", "Q": "QE"}


def _pairs(y_true: Iterable[float], y_pred: Iterable[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Float arrays of equal shape with NaN pairs removed."""
    yt = np.asarray(y_true, dtype=float)
    yp = np.asarray(y_pred, dtype=float)
    if yt.shape != yp.shape:
        raise ValueError(
            f"Shapes of y_true {yt.shape} and y_pred {yp.shape} do not match."
        )
    ok = np.isfinite(yt) & np.isfinite(yp)
    return yt[ok], yp[ok]


def kge(y_true: Iterable[float], y_pred: Iterable[float]) -> float:
    """
    Kling–Gupta efficiency (Gupta et al., 2009).

    ``1 - sqrt((r - 1)^2 + (sigma_p/sigma_o - 1)^2 + (mu_p/mu_o - 1)^2)``.
    NaN with fewer than two pairs, constant series or zero observed mean.
    """
    yt, yp = _pairs(y_true, y_pred)
    if yt.size < 2:
        return np.nan
    so, sp = float(np.std(yt, ddof=1)), float(np.std(yp, ddof=1))
    mo = float(np.mean(yt))
    if so == 0.0 or sp == 0.0 or mo == 0.0:
        return np.nan
    r = float(np.corrcoef(yt, yp)[0, 1])
    if not np.isfinite(r):
        return np.nan
    return float(1.0 - np.sqrt((r - 1.0) ** 2 + (sp / so - 1.0) ** 2 + (np.mean(yp) / mo - 1.0) ** 2))


def nse(y_true: Iterable[float], y_pred: Iterable[float]) -> float:
    """Nash–Sutcliffe efficiency; NaN when the observed variance is zero."""
    yt, yp = _pairs(y_true, y_pred)
    if yt.size < 2:
        return np.nan
    denom = float(np.sum((yt - yt.mean()) ** 2))
    if denom == 0.0:
        return np.nan
    return float(1.0 - np.sum((yt - yp) ** 2) / denom)


def regression_metrics(y_true: Iterable[float], y_pred: Iterable[float]) -> Dict[str, float]:
    """
    MAE, RMSE, R², KGE, NSE and bias on the valid (obs, pred) pairs.

    R² is the squared Pearson correlation, not ``sklearn.metrics.r2_score``,
    so that it does not duplicate NSE. ``bias`` is ``mean(pred) - mean(obs)``.
    """
    yt, yp = _pairs(y_true, y_pred)
    if yt.size == 0:
        return {k: np.nan for k in _REGRESSION_KEYS}

    r2 = np.nan
    if yt.size >= 2 and np.std(yt) > 0 and np.std(yp) > 0:
        r2 = float(np.corrcoef(yt, yp)[0, 1] ** 2)

    return {
        "MAE": float(mean_absolute_error(yt, yp)),
        "RMSE": float(np.sqrt(mean_squared_error(yt, yp))),
        "R2": r2,
        "KGE": kge(yt, yp),
        "NSE": nse(yt, yp),
        "bias": float(np.mean(yp) - np.mean(yt)),
    }


def occurrence_metrics(
    y_true: Iterable[float],
    y_pred: Iterable[float],
    wet_threshold: float = 0.1,
) -> Dict[str, float]:
    """
    Wet/dry scores: a day is wet when its value exceeds ``wet_threshold``.

    Returns
    -------
    dict
        ``wet_freq_obs``, ``wet_freq_pred``, ``freq_ratio``
        (pred/obs), ``hit_rate`` (wet days correctly predicted wet),
        ``false_alarm_ratio`` (predicted wet days observed dry) and
        ``accuracy``.
    """
    yt, yp = _pairs(y_true, y_pred)
    if yt.size == 0:
        return {k: np.nan for k in _OCCURRENCE_KEYS}

    ot = yt > wet_threshold
    pt = yp > wet_threshold
    hits = float(np.sum(ot & pt))
    f_obs = float(ot.mean())
    f_pred = float(pt.mean())
    return {
        "wet_freq_obs": f_obs,
        "wet_freq_pred": f_pred,
        "freq_ratio": f_pred / f_obs if f_obs > 0 else np.nan,
        "hit_rate": hits / ot.sum() if ot.any() else np.nan,
        "false_alarm_ratio": 1.0 - hits / pt.sum() if pt.any() else np.nan,
        "accuracy": float(np.mean(ot == pt)),
    }


def validation_table(
    obs: pd.DataFrame,
    pred: pd.DataFrame,
    *,
    wet_threshold: Optional[float] = None,
    freq: Optional[str] = None,
    agg: str = "sum",
) -> pd.DataFrame:
    """
    Score a prediction against observations, one row per station.

    Parameters
    ----------
    obs, pred : DataFrame or Series
        Observed and predicted series. Only dates present in both are
        scored.
    wet_threshold : float, optional
        When given, :func:`occurrence_metrics` are added (daily values only).
    freq : str, optional
        Resample both series before scoring (e.g. ``"M"``, ``"YE"``).
    agg : {"sum", "mean", "median"}
        Aggregation used with ``freq``.

    Returns
    -------
    DataFrame
        Index: stations; columns: score names plus ``n`` (scored pairs).
    """
    o = as_frame(obs)
    p = as_frame(pred)
    missing = [c for c in o.columns if c not in p.columns]
    if missing:
        raise ValueError(f"Stations {missing} are missing from the prediction.")
    p = p[list(o.columns)]

    common = o.index.intersection(p.index)
    if len(common) == 0:
        raise ValueError("Observations and prediction share no dates.")
    o = o.loc[common].sort_index()
    p = p.loc[common].sort_index()

    if freq is not None:
        agg = agg.lower()
        if agg not in {"sum", "mean", "median"}:
            raise ValueError("agg must be one of: 'sum', 'mean', or 'median'.")
        rule = _FREQ_ALIAS.get(freq, freq)
        both = o.notna() & p.notna()
        o = getattr(o.where(both).resample(rule), agg)()
        p = getattr(p.where(both).resample(rule), agg)()

    rows = {}
    for st in o.columns:
        scores = regression_metrics(o[st].to_numpy(), p[st].to_numpy())
        if wet_threshold is not None and freq is None:
            scores.update(occurrence_metrics(o[st].to_numpy(), p[st].to_numpy(), wet_threshold))
        scores["n"] = int((o[st].notna() & p[st].notna()).sum())
        rows[st] = scores
    return pd.DataFrame.from_dict(rows, orient="index")
