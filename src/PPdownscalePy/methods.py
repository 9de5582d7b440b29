# src/PPdownscalePy/methods.py
# SPDX-License-Identifier: MIT
"""
Downscaling methods.

The method set is closed: :class:`Analogs`, :class:`GLM` and :class:`LM`,
plus :class:`TwoStage`, the occurrence/amount pair of GLMs used for
precipitation. Every single-stage method exposes the same interface::

    model = method.train(design)                  # -> DownscalingModel
    pred = method.predict(model, new_design)      # -> DataFrame

``design`` objects come from :mod:`PPdownscalePy.predictors`. Predictions
are DataFrames indexed by the dates of ``new_design`` with one column per
predictand station.

:func:`resolve_method` maps the ``method`` string of
:func:`PPdownscalePy.core.downscale` onto these types and rejects anything
else.
"""

from __future__ import annotations

import operator
import warnings
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from sklearn.linear_model import (
    GammaRegressor,
    LinearRegression,
    LogisticRegression,
    PoissonRegressor,
)
from sklearn.neighbors import KDTree

from .errors import ConfigurationError
from .predictors import DesignMatrix

SEL_FUNS = ("mean", "wmean", "max", "min", "median")

# family -> accepted link (canonical link first)
FAMILY_LINKS = {
    "gaussian": "identity",
    "binomial": "logit",
    "Gamma": "log",
    "poisson": "log",
}

CONDITIONS = {
    "GT": operator.gt,
    "GE": operator.ge,
    "LT": operator.lt,
    "LE": operator.le,
}

# Large C ~ unpenalized logistic fit (classical GLM)
_LOGIT_C = 1e8
_MAX_ITER = 1000

__all__ = [
    "SEL_FUNS",
    "FAMILY_LINKS",
    "CONDITIONS",
    "DownscalingModel",
    "Analogs",
    "GLM",
    "LM",
    "TwoStage",
    "Method",
    "resolve_method",
    "downscale_train",
    "downscale_predict",
]


@dataclass
class DownscalingModel:
    """A trained downscaling model.

    Attributes
    ----------
    variant :
        The method that produced the model (carries the hyperparameters).
    fitted :
        Method specific fitted state (KD-tree and training predictand for
        analogs, one estimator per station for GLM/LM).
    stations :
        Predictand column labels, in order.
    predictors :
        Design-matrix columns seen at training time.
    n_train :
        Number of training time steps.
    """

    variant: "Method"
    fitted: Dict[str, Any]
    stations: List[Any]
    predictors: List[str]
    n_train: int

    @property
    def method(self) -> str:
        return self.variant.name


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------


def _training_arrays(design: DesignMatrix):
    if design.y is None:
        raise ConfigurationError("The training design has no predictand bound to it.")
    X = design.values
    Y = np.asarray(design.y.to_numpy(dtype=float))
    if len(X) == 0:
        raise ValueError("Training set is empty.")
    return X, Y


def _check_new_design(model: DownscalingModel, design: DesignMatrix) -> np.ndarray:
    cols = list(design.X.columns)
    if cols != model.predictors:
        raise ConfigurationError(
            "Prediction design does not match the training predictors "
            f"(expected {model.predictors[:5]}..., got {cols[:5]}...)."
        )
    return design.values


def _frame(values: np.ndarray, model: DownscalingModel, design: DesignMatrix) -> pd.DataFrame:
    return pd.DataFrame(values, index=design.dates, columns=model.stations)


# ---------------------------------------------------------------------
# Analogs
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class Analogs:
    """Analog (nearest-neighbour) downscaling.

    For each predicted day, the ``n_analogs`` closest training days in
    predictor space (Euclidean distance) are retrieved and their observed
    predictand values aggregated with ``sel_fun``:

    - ``"mean"``, ``"median"``, ``"max"``, ``"min"``: NaN-aware reductions;
    - ``"wmean"``: inverse-distance weighted mean (exact matches take all
      the weight).

    With ``n_analogs == 1`` the single neighbour is returned verbatim.
    """

    n_analogs: int = 1
    sel_fun: str = "mean"

    name: ClassVar[str] = "analogs"

    def __post_init__(self) -> None:
        if isinstance(self.n_analogs, bool) or int(self.n_analogs) != self.n_analogs:
            raise ConfigurationError(f"n_analogs must be an integer (got {self.n_analogs!r}).")
        if self.n_analogs < 1:
            raise ConfigurationError(f"n_analogs must be >= 1 (got {self.n_analogs}).")
        if self.sel_fun not in SEL_FUNS:
            raise ConfigurationError(
                f"Unknown sel_fun '{self.sel_fun}'. Use one of {list(SEL_FUNS)}."
            )

    def train(self, design: DesignMatrix) -> DownscalingModel:
        X, Y = _training_arrays(design)
        if self.n_analogs > len(X):
            raise ConfigurationError(
                f"n_analogs={self.n_analogs} exceeds the {len(X)} training time steps."
            )
        return DownscalingModel(
            variant=self,
            fitted={"tree": KDTree(X), "y": Y},
            stations=design.stations,
            predictors=list(design.X.columns),
            n_train=len(X),
        )

    def _aggregate(self, neigh: np.ndarray, dist: np.ndarray) -> np.ndarray:
        if self.sel_fun == "wmean":
            exact = dist == 0.0
            with np.errstate(divide="ignore"):
                w = np.where(exact.any(axis=1, keepdims=True), exact.astype(float), 1.0 / dist)
            w = w[:, :, None]
            valid = ~np.isnan(neigh)
            num = np.nansum(w * neigh, axis=1)
            den = np.sum(w * valid, axis=1)
            with np.errstate(invalid="ignore", divide="ignore"):
                return np.where(den > 0, num / den, np.nan)

        reducer = {
            "mean": np.nanmean,
            "median": np.nanmedian,
            "max": np.nanmax,
            "min": np.nanmin,
        }[self.sel_fun]
        with warnings.catch_warnings():
            # all-NaN neighbour sets give NaN
            warnings.simplefilter("ignore", RuntimeWarning)
            return reducer(neigh, axis=1)

    def predict(
        self,
        model: DownscalingModel,
        design: DesignMatrix,
        rng: Optional[np.random.Generator] = None,
    ) -> pd.DataFrame:
        X = _check_new_design(model, design)
        dist, ind = model.fitted["tree"].query(X, k=self.n_analogs)
        neigh = model.fitted["y"][ind]  # (n_new, k, n_stations)
        if self.n_analogs == 1:
            values = neigh[:, 0, :]
        else:
            values = self._aggregate(neigh, dist)
        return _frame(values, model, design)


# ---------------------------------------------------------------------
# Generalized linear models
# ---------------------------------------------------------------------


def _make_estimator(family: str):
    if family == "gaussian":
        return LinearRegression()
    if family == "binomial":
        return LogisticRegression(C=_LOGIT_C, max_iter=_MAX_ITER)
    if family == "Gamma":
        return GammaRegressor(alpha=0.0, max_iter=_MAX_ITER)
    return PoissonRegressor(alpha=0.0, max_iter=_MAX_ITER)


def _conditional_mean(family: str, estimator, X: np.ndarray) -> np.ndarray:
    if family == "binomial":
        classes = list(estimator.classes_)
        return estimator.predict_proba(X)[:, classes.index(1.0)]
    return estimator.predict(X)


def _dispersion(family: str, y: np.ndarray, mu: np.ndarray, n_params: int) -> float:
    """Pearson estimate of the dispersion parameter (1 for binomial/poisson)."""
    if family in ("binomial", "poisson"):
        return 1.0
    dof = len(y) - n_params
    if dof <= 0:
        dof = len(y)
    if family == "gaussian":
        resid = y - mu
    else:
        resid = (y - mu) / mu
    return float(np.sum(resid ** 2) / dof)


@dataclass(frozen=True)
class GLM:
    """Generalized linear model, one fit per predictand station.

    Parameters
    ----------
    family : {"gaussian", "binomial", "Gamma", "poisson"}
        Error distribution.
    link : str, optional
        Only the canonical links are available
        (identity, logit, log, log); ``None`` selects it.
    condition, threshold :
        Optional training filter: keep rows where
        ``y <condition> threshold`` (``"GT"``, ``"GE"``, ``"LT"``,
        ``"LE"``). Rows with missing predictand are always dropped.
    simulate : bool
        Predict a random draw from the fitted conditional distribution
        instead of the conditional mean.
    random_state : int, optional
        Seed used when no generator is passed to :meth:`predict`.
    """

    family: str = "gaussian"
    link: Optional[str] = None
    condition: Optional[str] = None
    threshold: Optional[float] = None
    simulate: bool = False
    random_state: Optional[int] = None

    name: ClassVar[str] = "glm"

    def __post_init__(self) -> None:
        if self.family not in FAMILY_LINKS:
            raise ConfigurationError(
                f"Unknown family '{self.family}'. Use one of {list(FAMILY_LINKS)}."
            )
        canonical = FAMILY_LINKS[self.family]
        if self.link is None:
            object.__setattr__(self, "link", canonical)
        elif self.link != canonical:
            raise ConfigurationError(
                f"Link '{self.link}' is not available for family '{self.family}' "
                f"(use '{canonical}')."
            )
        if self.condition is not None:
            if self.condition not in CONDITIONS:
                raise ConfigurationError(
                    f"Unknown condition '{self.condition}'. Use one of {list(CONDITIONS)}."
                )
            if self.threshold is None:
                raise ConfigurationError("A threshold is required with a condition.")

    def _training_rows(self, y: np.ndarray) -> np.ndarray:
        rows = np.isfinite(y)
        if self.condition is not None:
            with np.errstate(invalid="ignore"):
                rows &= CONDITIONS[self.condition](y, float(self.threshold))
        return rows

    def train(self, design: DesignMatrix) -> DownscalingModel:
        X, Y = _training_arrays(design)
        stations = design.stations
        fits = []
        for j, st in enumerate(stations):
            yj = Y[:, j]
            rows = self._training_rows(yj)
            if not rows.any():
                raise ValueError(
                    f"Training set is empty after filtering for station {st!r}."
                )
            est = _make_estimator(self.family)
            est.fit(X[rows], yj[rows])
            mu = _conditional_mean(self.family, est, X[rows])
            fits.append(
                {
                    "estimator": est,
                    "dispersion": _dispersion(self.family, yj[rows], mu, X.shape[1] + 1),
                    "n_obs": int(rows.sum()),
                }
            )
        return DownscalingModel(
            variant=self,
            fitted={"stations": fits},
            stations=stations,
            predictors=list(design.X.columns),
            n_train=len(X),
        )

    def _draw(self, rng: np.random.Generator, mu: np.ndarray, phi: float) -> np.ndarray:
        if self.family == "binomial":
            return rng.binomial(1, np.clip(mu, 0.0, 1.0)).astype(float)
        if self.family == "poisson":
            return rng.poisson(mu).astype(float)
        if phi <= 0.0:
            return mu
        if self.family == "Gamma":
            shape = 1.0 / phi
            return rng.gamma(shape, mu * phi)
        return rng.normal(mu, np.sqrt(phi))

    def predict(
        self,
        model: DownscalingModel,
        design: DesignMatrix,
        rng: Optional[np.random.Generator] = None,
    ) -> pd.DataFrame:
        X = _check_new_design(model, design)
        if self.simulate and rng is None:
            rng = np.random.default_rng(self.random_state)
        cols = []
        for fit in model.fitted["stations"]:
            mu = _conditional_mean(self.family, fit["estimator"], X)
            if self.simulate:
                mu = self._draw(rng, mu, fit["dispersion"])
            cols.append(mu)
        values = np.column_stack(cols) if cols else np.empty((len(X), 0))
        return _frame(values, model, design)


@dataclass(frozen=True)
class LM:
    """Ordinary least squares (gaussian GLM with identity link)."""

    name: ClassVar[str] = "lm"

    def train(self, design: DesignMatrix) -> DownscalingModel:
        model = GLM("gaussian").train(design)
        model.variant = self
        return model

    def predict(
        self,
        model: DownscalingModel,
        design: DesignMatrix,
        rng: Optional[np.random.Generator] = None,
    ) -> pd.DataFrame:
        return GLM("gaussian").predict(model, design)


@dataclass(frozen=True)
class TwoStage:
    """Occurrence (binomial/logit) and amount (Gamma/log on wet days) GLMs."""

    occurrence: GLM
    amount: GLM
    simulate: bool = False

    name: ClassVar[str] = "glm"

    @classmethod
    def precipitation(cls, simulate: bool = False, random_state: Optional[int] = None) -> "TwoStage":
        return cls(
            occurrence=GLM("binomial", "logit", simulate=simulate, random_state=random_state),
            amount=GLM(
                "Gamma",
                "log",
                condition="GT",
                threshold=0.0,
                simulate=simulate,
                random_state=random_state,
            ),
            simulate=simulate,
        )


Method = Union[Analogs, GLM, LM]


def resolve_method(
    method: str,
    *,
    simulate: bool = False,
    n_analogs: int = 1,
    sel_fun: str = "mean",
    random_state: Optional[int] = None,
) -> Union[Analogs, LM, TwoStage]:
    """
    Map a method name to its implementation.

    ``"analogs"`` -> :class:`Analogs`, ``"glm"`` -> :class:`TwoStage`
    (precipitation occurrence/amount GLMs), ``"lm"`` -> :class:`LM`.

    Raises
    ------
    ConfigurationError
        For any other method name.
    """
    if method == "analogs":
        if n_analogs == 1 and sel_fun != "mean":
            warnings.warn(
                "sel_fun is ignored when n_analogs = 1.", UserWarning, stacklevel=2
            )
        if simulate:
            warnings.warn(
                "simulate is ignored by the analog method.", UserWarning, stacklevel=2
            )
        return Analogs(n_analogs=n_analogs, sel_fun=sel_fun)
    if method == "glm":
        return TwoStage.precipitation(simulate=simulate, random_state=random_state)
    if method == "lm":
        if simulate:
            warnings.warn(
                "simulate is ignored by the linear method.", UserWarning, stacklevel=2
            )
        return LM()
    raise ConfigurationError(
        f"Unknown method '{method}'. Use 'analogs', 'glm' or 'lm'."
    )


def downscale_train(design: DesignMatrix, method: Method) -> DownscalingModel:
    """Train *method* on a prepared design matrix."""
    return method.train(design)


def downscale_predict(
    design: DesignMatrix,
    model: DownscalingModel,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """Predict *design* with a trained model."""
    return model.variant.predict(model, design, rng=rng)
