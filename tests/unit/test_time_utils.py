"""Tests for calendar helpers and the goodness-of-fit proxy."""

from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")
pd = pytest.importorskip("pandas")

from aquifer_proxy.utils.metrics import goodness_of_fit, sum_of_squares, zero_variance_tolerance
from aquifer_proxy.utils.time_utils import add_months, count_months, elapsed_years, month_windows


def test_month_windows_anchor_on_start() -> None:
    windows = month_windows("2004-01-31", "2004-04-01")
    assert [start for start, _ in windows] == [
        pd.Timestamp("2004-01-31"),
        pd.Timestamp("2004-02-29"),
        pd.Timestamp("2004-03-31"),
    ]
    assert windows[0][1] == pd.Timestamp("2004-02-29")


@pytest.mark.parametrize(
    "start, end, expected",
    [
        ("2003-01-01", "2013-01-01", 120),
        ("2003-01-01", "2003-01-01", 0),
        ("2003-01-01", "2002-01-01", 0),
        ("2003-01-01", "2003-01-02", 1),
        ("2002-04-01", "2025-10-01", 282),
    ],
)
def test_count_months_half_open(start, end, expected) -> None:
    assert count_months(start, end) == expected


def test_add_months_clips_day() -> None:
    assert add_months("2004-01-31", 1) == pd.Timestamp("2004-02-29")


def test_elapsed_years_uses_julian_year() -> None:
    t = elapsed_years(["2003-01-01", "2004-01-01", "2005-01-01"], "2003-01-01")
    np.testing.assert_allclose(t, [0.0, 365 / 365.25, 731 / 365.25])


def test_goodness_of_fit_flat_series_is_one() -> None:
    assert goodness_of_fit([2.0, 2.0, 2.0], [2.0, 2.0, 2.0]) == 1.0


def test_goodness_of_fit_penalises_residuals() -> None:
    obs = np.array([1.0, 2.0, 3.0, 4.0])
    assert goodness_of_fit(obs, obs) == pytest.approx(1.0)
    assert goodness_of_fit(obs, np.full(4, obs.mean())) == pytest.approx(0.0)
    sse, sst = sum_of_squares(obs, obs + 1.0)
    assert sse == pytest.approx(4.0)
    assert sst == pytest.approx(5.0)


def test_goodness_of_fit_ignores_nan_pairs() -> None:
    assert goodness_of_fit([1.0, np.nan, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert np.isnan(goodness_of_fit([np.nan], [1.0]))


def test_goodness_of_fit_round_off_flat_series_is_one() -> None:
    obs = np.array([4.4e-15, -2.2e-15, 0.0, 1.1e-15, -4.4e-15])
    assert zero_variance_tolerance(obs) == pytest.approx(5 * np.finfo(float).eps)
    assert goodness_of_fit(obs, np.zeros(5)) == pytest.approx(1.0)


def test_goodness_of_fit_keeps_small_real_variance() -> None:
    obs = np.array([0.0, 1e-3, 2e-3, 3e-3])
    assert goodness_of_fit(obs, np.full(4, obs.mean())) == pytest.approx(0.0)
