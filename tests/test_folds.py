# tests/test_folds.py
import numpy as np
import pandas as pd
import pytest

from PPdownscalePy.errors import ConfigurationError
from PPdownscalePy.folds import (
    ExplicitFolds,
    KFold,
    KFoldFraction,
    LeaveOneYearOut,
    NoFolds,
    fold_years,
    resolve_fold_plan,
)


def _assert_partition(folds, n):
    allpos = np.concatenate(folds)
    assert len(allpos) == n
    assert len(np.unique(allpos)) == n  # pairwise disjoint and covering


# ----------------------------------------------------------------------
# Plans
# ----------------------------------------------------------------------


def test_no_folds_trains_and_predicts_on_full_period(dates):
    splits = NoFolds().splits(dates)
    assert len(splits) == 1
    train, test = splits[0]
    np.testing.assert_array_equal(train, np.arange(len(dates)))
    np.testing.assert_array_equal(test, np.arange(len(dates)))


def test_leave_one_year_out_three_years(dates):
    plan = LeaveOneYearOut()
    folds = plan.folds(dates)
    assert len(folds) == 3
    for f, year in zip(folds, [2000, 2001, 2002]):
        assert set(dates[f].year) == {year}
        assert dates[f].is_monotonic_increasing
    _assert_partition(folds, len(dates))
    assert fold_years(plan, dates) == [[2000], [2001], [2002]]


def test_leave_one_year_out_orders_shuffled_dates(dates):
    shuffled = dates[np.random.default_rng(0).permutation(len(dates))]
    folds = LeaveOneYearOut().folds(shuffled)
    assert [int(shuffled[f[0]].year) for f in folds] == [2000, 2001, 2002]
    for f in folds:
        assert shuffled[f].is_monotonic_increasing


def test_leave_one_year_out_needs_two_years():
    one_year = pd.date_range("2000-01-01", periods=30, freq="D")
    with pytest.raises(ConfigurationError):
        LeaveOneYearOut().splits(one_year)


@pytest.mark.parametrize("k", [2, 3, 7, 10])
def test_kfold_contiguous_balanced(dates, k):
    folds = KFold(k).folds(dates)
    assert len(folds) == k
    sizes = [len(f) for f in folds]
    assert max(sizes) - min(sizes) <= 1
    np.testing.assert_array_equal(np.concatenate(folds), np.arange(len(dates)))


def test_kfold_splits_hold_out_each_fold(dates):
    splits = KFold(4).splits(dates)
    assert len(splits) == 4
    for train, test in splits:
        assert len(np.intersect1d(train, test)) == 0
        assert len(train) + len(test) == len(dates)


def test_kfold_more_folds_than_steps():
    short = pd.date_range("2000-01-01", periods=3, freq="D")
    with pytest.raises(ConfigurationError):
        KFold(5).folds(short)


def test_kfold_fraction_two_folds(dates):
    plan = KFoldFraction(0.75)
    folds = plan.folds(dates)
    assert len(folds) == 2
    assert len(folds[0]) == round(0.75 * len(dates))
    np.testing.assert_array_equal(np.concatenate(folds), np.arange(len(dates)))

    splits = plan.splits(dates)
    assert len(splits) == 1
    train, test = splits[0]
    np.testing.assert_array_equal(train, folds[0])
    np.testing.assert_array_equal(test, folds[1])


def test_explicit_folds_keep_given_order(dates):
    plan = ExplicitFolds(((2002,), (2000, 2001)))
    folds = plan.folds(dates)
    assert set(dates[folds[0]].year) == {2002}
    assert set(dates[folds[1]].year) == {2000, 2001}
    assert dates[folds[1]].is_monotonic_increasing
    _assert_partition(folds, len(dates))


def test_explicit_folds_validation(dates):
    with pytest.raises(ConfigurationError, match="more than one fold"):
        ExplicitFolds(((2000, 2001), (2001, 2002)))
    with pytest.raises(ConfigurationError, match="matches no date"):
        ExplicitFolds(((2000,), (1990,))).folds(dates)
    with pytest.raises(ConfigurationError):
        ExplicitFolds(((2000, 2001, 2002),))


def test_explicit_folds_partial_cover_trains_on_remaining_years(dates):
    splits = ExplicitFolds(((2000,), (2001,))).splits(dates)
    train, test = splits[0]
    assert set(dates[test].year) == {2000}
    assert set(dates[train].year) == {2001, 2002}


# ----------------------------------------------------------------------
# Resolution of cross_val / folds arguments
# ----------------------------------------------------------------------


def test_resolve_fold_plan_variants():
    assert resolve_fold_plan("none") == NoFolds()
    assert resolve_fold_plan("loocv") == LeaveOneYearOut()
    assert resolve_fold_plan("kfold", 5) == KFold(5)
    assert resolve_fold_plan("kfold", 4.0) == KFold(4)
    assert resolve_fold_plan("kfold", 0.8) == KFoldFraction(0.8)
    assert resolve_fold_plan("kfold", [[1985, 1986], [1987]]) == ExplicitFolds(
        ((1985, 1986), (1987,))
    )
    plan = KFold(3)
    assert resolve_fold_plan(plan) is plan


def test_resolve_fold_plan_kfold_requires_folds():
    with pytest.raises(ConfigurationError, match="folds"):
        resolve_fold_plan("kfold")


@pytest.mark.parametrize("bad", [1, 0, -2, 1.5, True, "ten", [1985, 1986]])
def test_resolve_fold_plan_rejects_malformed_folds(bad):
    with pytest.raises(ConfigurationError):
        resolve_fold_plan("kfold", bad)


def test_resolve_fold_plan_unknown_strategy():
    with pytest.raises(ConfigurationError, match="Unknown cross_val"):
        resolve_fold_plan("bootstrap")


def test_resolve_fold_plan_warns_on_ignored_folds():
    with pytest.warns(UserWarning, match="ignored"):
        assert resolve_fold_plan("loocv", 5) == LeaveOneYearOut()
