# tests/conftest.py
import numpy as np
import pandas as pd
import pytest

from PPdownscalePy.grid import make_multi_grid


# ----------------------------------------------------------------------
# Synthetic predictor / predictand helpers
# ----------------------------------------------------------------------


def make_predictor_grid(dates: pd.DatetimeIndex, seed: int = 0) -> pd.DataFrame:
    """
    Two variables (ta850, hus850) on four grid points, with different
    means and spreads so that standardization matters.
    """
    rng = np.random.default_rng(seed)
    n = len(dates)
    ta = pd.DataFrame(
        280.0 + 5.0 * rng.normal(size=(n, 4)), index=dates, columns=[0, 1, 2, 3]
    )
    hus = pd.DataFrame(
        0.008 + 0.002 * rng.normal(size=(n, 4)), index=dates, columns=[0, 1, 2, 3]
    )
    return make_multi_grid({"ta850": ta, "hus850": hus})


def make_precipitation(x: pd.DataFrame, seed: int = 1) -> pd.DataFrame:
    """
    Daily precipitation at two stations driven by the predictors: wet
    days when standardized humidity is high, amounts growing with it.
    """
    rng = np.random.default_rng(seed)
    hus = x["hus850"].mean(axis=1)
    ta = x["ta850"].mean(axis=1)
    signal = (hus - hus.mean()) / hus.std() - 0.5 * (ta - ta.mean()) / ta.std()
    out = {}
    for k, st in enumerate(["st1", "st2"]):
        noise = rng.normal(scale=0.7, size=len(x))
        wet = (signal + noise) > 0.3
        amount = np.exp(0.8 + 0.5 * signal) * rng.gamma(2.0, 1.0, size=len(x)) + 0.2 * k
        out[st] = np.where(wet, amount, 0.0)
    return pd.DataFrame(out, index=x.index)


@pytest.fixture
def dates() -> pd.DatetimeIndex:
    """Three full years of daily dates (2000-2002)."""
    return pd.date_range("2000-01-01", "2002-12-31", freq="D")


@pytest.fixture
def x(dates) -> pd.DataFrame:
    return make_predictor_grid(dates)


@pytest.fixture
def y(x) -> pd.DataFrame:
    return make_precipitation(x)
