# tests/test_predictors.py
import numpy as np
import pandas as pd
import pytest

from PPdownscalePy.errors import ConfigurationError, DateMismatchError
from PPdownscalePy.grid import scale_grid, subset_grid
from PPdownscalePy.predictors import (
    COMBINED,
    SpatialPredictors,
    as_predictor_grid,
    prepare_data,
    prepare_new_data,
    spatial_predictors_from_n_pcs,
)


@pytest.fixture
def x_std(x):
    return scale_grid(x, base=x)


def test_prepare_data_raw_fields(x_std, y):
    design = prepare_data(x_std, y)
    assert design.X.shape == (len(x_std), 8)
    assert design.X.columns[0] == "ta850@0"
    assert design.dates.equals(x_std.index)
    assert design.stations == ["st1", "st2"]
    assert design.spatial_predictors is None


def test_prepare_data_global_vars_subset(x_std, y):
    design = prepare_data(x_std, y, global_vars=["hus850"])
    assert list(design.X.columns) == [f"hus850@{p}" for p in range(4)]
    with pytest.raises(ConfigurationError):
        prepare_data(x_std, y, global_vars=["psl"])


def test_prepare_data_requires_aligned_predictand(x_std, y):
    with pytest.raises(DateMismatchError):
        prepare_data(x_std, y.iloc[1:])


def test_spatial_predictors_from_n_pcs():
    assert spatial_predictors_from_n_pcs(["a", "b"], None) is None
    sp = spatial_predictors_from_n_pcs(["a", "b"], 3)
    assert sp.n == {"a": 1, "b": 1}
    assert sp.combined == 3
    assert tuple(sp.which_combine) == ("a", "b")
    with pytest.raises(ConfigurationError):
        spatial_predictors_from_n_pcs(["a"], 2.5)


def test_prepare_data_with_pcs(x_std, y):
    sp = spatial_predictors_from_n_pcs(["ta850", "hus850"], 3)
    design = prepare_data(x_std, y, spatial_predictors=sp)
    assert list(design.X.columns) == [
        "ta850_PC1",
        "hus850_PC1",
        "COMBINED_PC1",
        "COMBINED_PC2",
        "COMBINED_PC3",
    ]
    assert set(design.pcas) == {"ta850", "hus850", COMBINED}
    # PC scores are centred on the training period
    assert np.allclose(design.X.mean().to_numpy(), 0.0, atol=1e-8)


def test_spatial_predictors_must_match_variables(x_std, y):
    sp = SpatialPredictors(n={"ta850": 1, "psl": 1}, combined=2, which_combine=("ta850", "psl"))
    with pytest.raises(ConfigurationError, match="do not match"):
        prepare_data(x_std, y, spatial_predictors=sp)


def test_too_many_pcs_is_a_configuration_error(x_std, y):
    sp = SpatialPredictors(n={"ta850": 5, "hus850": 1})
    with pytest.raises(ConfigurationError):
        prepare_data(x_std, y, spatial_predictors=sp)


def test_invalid_spatial_predictor_counts():
    with pytest.raises(ConfigurationError):
        SpatialPredictors(n={"a": 0})
    with pytest.raises(ConfigurationError):
        SpatialPredictors(n={"a": 1}, combined=2)


def test_prepare_new_data_reuses_training_pcs(x, y):
    train = subset_grid(x, years=[2000, 2001])
    test = subset_grid(x, years=[2002])
    sp = spatial_predictors_from_n_pcs(["ta850", "hus850"], 2)

    design = prepare_data(
        scale_grid(train, base=train), subset_grid(y, years=[2000, 2001]), spatial_predictors=sp
    )
    new = prepare_new_data(scale_grid(test, base=train), design)
    assert new.y is None
    assert list(new.X.columns) == list(design.X.columns)
    assert new.dates.equals(test.index)
    assert new.pcas is design.pcas

    # projecting the training period reproduces the training design
    again = prepare_new_data(scale_grid(train, base=train), design)
    np.testing.assert_allclose(again.values, design.values, atol=1e-10)


def test_prepare_new_data_checks_variables_and_points(x_std, y):
    design = prepare_data(x_std, y)
    with pytest.raises(ConfigurationError):
        prepare_new_data(subset_grid(x_std, var="ta850"), design)
    fewer_points = x_std.drop(columns=[("hus850", 3)])
    with pytest.raises(ConfigurationError):
        prepare_new_data(fewer_points, design)


def test_missing_predictor_values_are_rejected(x_std, y):
    bad = x_std.copy()
    bad.iloc[3, 2] = np.nan
    with pytest.raises(ValueError, match="missing"):
        prepare_data(bad, y)


def test_as_predictor_grid_wraps_flat_columns(dates):
    flat = pd.DataFrame({"t2m": np.arange(len(dates), dtype=float)}, index=dates)
    g = as_predictor_grid(flat)
    assert isinstance(g.columns, pd.MultiIndex)
    assert list(g.columns) == [("t2m", 0)]
