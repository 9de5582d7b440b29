# tests/test_methods.py
import numpy as np
import pandas as pd
import pytest

from PPdownscalePy.errors import ConfigurationError
from PPdownscalePy.grid import scale_grid
from PPdownscalePy.methods import (
    GLM,
    LM,
    Analogs,
    TwoStage,
    downscale_predict,
    downscale_train,
    resolve_method,
)
from PPdownscalePy.occurrence import split_occurrence_amount
from PPdownscalePy.predictors import DesignMatrix, prepare_data, prepare_new_data


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _design(X, y=None, start="2000-01-01") -> DesignMatrix:
    X = np.asarray(X, dtype=float).reshape(len(X), -1)
    idx = pd.date_range(start, periods=len(X), freq="D")
    Xdf = pd.DataFrame(X, index=idx, columns=[f"v@{i}" for i in range(X.shape[1])])
    ydf = None
    if y is not None:
        ydf = pd.DataFrame(np.asarray(y, dtype=float).reshape(len(X), -1), index=idx)
        ydf.columns = [f"st{j}" for j in range(ydf.shape[1])]
    return DesignMatrix(X=Xdf, y=ydf, global_vars=["v"])


@pytest.fixture
def line_design():
    return _design([0.0, 1.0, 2.0, 10.0], [1.0, 2.0, 3.0, 100.0])


# ----------------------------------------------------------------------
# Analogs
# ----------------------------------------------------------------------


def test_single_analog_returns_training_value_verbatim(x, y):
    x_std = scale_grid(x, base=x)
    design = prepare_data(x_std, y)
    model = downscale_train(design, Analogs(n_analogs=1))
    pred = downscale_predict(prepare_new_data(x_std, design), model)
    pd.testing.assert_frame_equal(pred, design.y, check_freq=False)


@pytest.mark.parametrize(
    "sel_fun, expected",
    [("mean", 1.5), ("median", 1.5), ("max", 2.0), ("min", 1.0), ("wmean", 1.4)],
)
def test_analog_selection_functions(line_design, sel_fun, expected):
    method = Analogs(n_analogs=2, sel_fun=sel_fun)
    model = method.train(line_design)
    pred = method.predict(model, _design([0.4], start="2001-01-01"))
    assert pred.iloc[0, 0] == pytest.approx(expected)


def test_weighted_mean_exact_match_takes_all_weight(line_design):
    method = Analogs(n_analogs=3, sel_fun="wmean")
    model = method.train(line_design)
    pred = method.predict(model, _design([2.0]))
    assert pred.iloc[0, 0] == pytest.approx(3.0)


def test_analogs_ignore_missing_neighbour_values():
    design = _design([0.0, 1.0, 2.0], [np.nan, 2.0, 4.0])
    method = Analogs(n_analogs=2, sel_fun="mean")
    pred = method.predict(method.train(design), _design([0.1]))
    assert pred.iloc[0, 0] == pytest.approx(2.0)


def test_analogs_configuration_errors(line_design):
    with pytest.raises(ConfigurationError):
        Analogs(n_analogs=0)
    with pytest.raises(ConfigurationError):
        Analogs(sel_fun="mode")
    with pytest.raises(ConfigurationError):
        Analogs(n_analogs=5).train(line_design)


def test_prediction_requires_training_predictors(line_design):
    model = Analogs().train(line_design)
    with pytest.raises(ConfigurationError):
        Analogs().predict(model, _design(np.zeros((2, 2))))


# ----------------------------------------------------------------------
# GLM / LM
# ----------------------------------------------------------------------


def test_gaussian_glm_recovers_linear_relation():
    xs = np.linspace(-2, 2, 50)
    design = _design(xs, 2.0 + 3.0 * xs)
    method = GLM("gaussian")
    pred = method.predict(method.train(design), _design([0.0, 1.0]))
    np.testing.assert_allclose(pred["st0"].to_numpy(), [2.0, 5.0], atol=1e-8)


def test_lm_equals_gaussian_glm():
    rng = np.random.default_rng(0)
    xs = rng.normal(size=(60, 3))
    ys = xs @ np.array([1.0, -2.0, 0.5]) + rng.normal(scale=0.1, size=60)
    design = _design(xs, ys)
    new = _design(rng.normal(size=(5, 3)))
    lm_model = LM().train(design)
    assert lm_model.method == "lm"
    pd.testing.assert_frame_equal(
        LM().predict(lm_model, new),
        GLM("gaussian").predict(GLM("gaussian").train(design), new),
    )


def test_glm_condition_restricts_training_rows():
    xs = np.linspace(0, 1, 20)
    ys = np.where(xs > 0.5, 1.0 + xs, 0.0)
    model = GLM("Gamma", condition="GT", threshold=0.0).train(_design(xs, ys))
    assert model.fitted["stations"][0]["n_obs"] == int((ys > 0).sum())


def test_glm_amount_on_masked_series(x, y):
    _, amount = split_occurrence_amount(y, wet_threshold=0.1)
    x_std = scale_grid(x, base=x)
    design = prepare_data(x_std, amount)
    method = GLM("Gamma", "log", condition="GT", threshold=0.0)
    model = method.train(design)
    pred = method.predict(model, prepare_new_data(x_std, design))
    assert pred.index.equals(x.index)
    assert (pred.to_numpy() > 0).all()
    assert model.fitted["stations"][0]["n_obs"] == int(amount["st1"].notna().sum())


def test_binomial_glm_probabilities_and_simulation(x, y):
    occ, _ = split_occurrence_amount(y, wet_threshold=0.1)
    x_std = scale_grid(x, base=x)
    design = prepare_data(x_std, occ)
    new = prepare_new_data(x_std, design)

    prob = GLM("binomial").predict(GLM("binomial").train(design), new)
    assert ((prob.to_numpy() >= 0) & (prob.to_numpy() <= 1)).all()

    sim = GLM("binomial", simulate=True, random_state=7)
    draws = sim.predict(sim.train(design), new)
    assert set(np.unique(draws.to_numpy())) <= {0.0, 1.0}
    again = sim.predict(sim.train(design), new)
    pd.testing.assert_frame_equal(draws, again)


def test_gamma_simulation_draws_are_positive(x, y):
    _, amount = split_occurrence_amount(y, wet_threshold=0.1)
    x_std = scale_grid(x, base=x)
    design = prepare_data(x_std, amount)
    method = GLM("Gamma", condition="GT", threshold=0.0, simulate=True)
    draws = method.predict(method.train(design), prepare_new_data(x_std, design),
                           rng=np.random.default_rng(1))
    assert (draws.to_numpy() >= 0).all()
    assert draws.std().min() > 0


def test_glm_empty_training_set_is_reported():
    design = _design([0.0, 1.0, 2.0], [0.0, 0.0, 0.0])
    with pytest.raises(ValueError, match="empty"):
        GLM("Gamma", condition="GT", threshold=0.0).train(design)


def test_glm_configuration_errors():
    with pytest.raises(ConfigurationError):
        GLM("tweedie")
    with pytest.raises(ConfigurationError):
        GLM("Gamma", link="identity")
    with pytest.raises(ConfigurationError):
        GLM("Gamma", condition="NE", threshold=0)
    with pytest.raises(ConfigurationError):
        GLM("Gamma", condition="GT")
    assert GLM("binomial").link == "logit"


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------


def test_resolve_method_variants():
    assert resolve_method("analogs", n_analogs=3, sel_fun="max") == Analogs(3, "max")
    assert resolve_method("lm") == LM()

    two = resolve_method("glm", simulate=True)
    assert isinstance(two, TwoStage)
    assert two.simulate
    assert (two.occurrence.family, two.occurrence.link) == ("binomial", "logit")
    assert (two.amount.family, two.amount.link) == ("Gamma", "log")
    assert (two.amount.condition, two.amount.threshold) == ("GT", 0.0)


def test_resolve_method_unknown_fails_fast():
    with pytest.raises(ConfigurationError, match="Unknown method"):
        resolve_method("random_forest")


def test_resolve_method_warns_on_ignored_options():
    with pytest.warns(UserWarning, match="sel_fun"):
        resolve_method("analogs", n_analogs=1, sel_fun="max")
    with pytest.warns(UserWarning, match="simulate"):
        resolve_method("lm", simulate=True)
