# src/PPdownscalePy/occurrence.py
# SPDX-License-Identifier: MIT
"""
Occurrence / amount handling for precipitation-like predictands.

Precipitation is modelled in two stages: a binary *occurrence* series
(wet/dry) and a continuous *amount* series defined on wet days only. This
module splits an observed series into both parts and recombines the two
model predictions into a single series.

Threshold policy
----------------
When stochastic simulation is requested the occurrence split uses the fixed
threshold :data:`SIMULATION_WET_THRESHOLD` (0.01), whatever the caller's
``wet_threshold``; the caller's value is then applied to the recombined,
simulated series. Without simulation the caller's ``wet_threshold`` is used
for the split directly.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .grid import as_frame, binary_grid, grid_arithmetics

SIMULATION_WET_THRESHOLD = 0.01

__all__ = [
    "SIMULATION_WET_THRESHOLD",
    "occurrence_threshold",
    "split_occurrence_amount",
    "combine_occurrence_amount",
]


def occurrence_threshold(simulate: bool, wet_threshold: float) -> float:
    """Threshold used to define occurrence for the model-fitting stage."""
    return SIMULATION_WET_THRESHOLD if simulate else float(wet_threshold)


def split_occurrence_amount(
    y: pd.DataFrame,
    wet_threshold: float = 0.1,
    simulate: bool = False,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split *y* into occurrence (0/1) and amount series.

    Parameters
    ----------
    y : DataFrame or Series
        Observed precipitation-like series.
    wet_threshold : float
        Wet-day threshold used when ``simulate`` is False.
    simulate : bool
        Whether the downstream models will simulate. Forces the threshold
        to :data:`SIMULATION_WET_THRESHOLD`.

    Returns
    -------
    occurrence, amount : DataFrame
        ``occurrence`` is 1 where ``y > threshold`` and 0 elsewhere.
        ``amount`` equals ``y`` on wet steps and is NaN (masked) on dry
        steps. Both share the index and columns of ``y``.
    """
    thr = occurrence_threshold(simulate, wet_threshold)
    occ = binary_grid(y, threshold=thr)
    amount = binary_grid(y, threshold=thr, partial=True, fill=np.nan)
    return occ, amount


def combine_occurrence_amount(
    occurrence: pd.DataFrame,
    amount: pd.DataFrame,
    *,
    simulate: bool,
    wet_threshold: float,
    ref_obs: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """
    Recombine occurrence and amount predictions as their elementwise product.

    Parameters
    ----------
    occurrence : DataFrame
        Occurrence prediction: probabilities when not simulating, 0/1 draws
        otherwise.
    amount : DataFrame
        Amount prediction on the same dates and stations.
    simulate : bool
        Whether both predictions are stochastic draws.
    wet_threshold : float
        Final wet-day threshold applied to simulated series (values at or
        below it become 0).
    ref_obs : DataFrame, optional
        Observed occurrence of the training period. Required when not
        simulating: probabilities are binarized so that the predicted wet
        frequency matches the observed one.

    Raises
    ------
    ValueError
        If the amount prediction has negative values, or ``ref_obs`` is
        missing for a deterministic combination.
    """
    amt = as_frame(amount)
    if (amt.to_numpy(dtype=float) < 0).any():
        raise ValueError(
            "Amount prediction has negative values; check the amount model family."
        )

    if simulate:
        occ = as_frame(occurrence)
    else:
        if ref_obs is None:
            raise ValueError(
                "ref_obs (observed occurrence) is required to binarize "
                "occurrence probabilities."
            )
        occ = binary_grid(occurrence, ref_obs=ref_obs, ref_pred=occurrence)

    out = grid_arithmetics(occ, amt, operator="*")
    if simulate:
        out = binary_grid(out, threshold=wet_threshold, partial=True, fill=0.0)
    return out
