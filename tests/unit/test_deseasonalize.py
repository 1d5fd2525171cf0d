"""Tests for monthly-climatology deseasonalisation."""

from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")
pd = pytest.importorskip("pandas")

from aquifer_proxy.data_processing.raster import Raster
from aquifer_proxy.storage.deseasonalize import deseasonalize, monthly_climatology


def _seasonal(k, t):
    return 5.0 + 3.0 * np.sin(2 * np.pi * (t.month - 1) / 12.0)


def test_pure_seasonal_signal_deseasonalises_to_zero(reference, make_series) -> None:
    series = make_series(reference, pd.date_range("2004-01-01", periods=36, freq="MS"), v=_seasonal)

    result = deseasonalize(series, "v")

    assert result.channel == "v_ds"
    assert len(result.series) == 36
    assert result.excluded == 0
    for sample in result.series:
        np.testing.assert_allclose(sample["v_ds"].filled(), 0.0, atol=1e-12)


def test_climatology_has_one_entry_per_month_present(reference, make_series) -> None:
    series = make_series(reference, ["2004-01-01", "2005-01-01", "2004-07-01"], v=lambda k, t: float(t.year - 2000))
    climatology = monthly_climatology(series, "v")
    assert sorted(climatology) == [1, 7]
    np.testing.assert_allclose(climatology[1].filled(), 4.5)


def test_months_without_baseline_climatology_are_excluded(reference, make_series) -> None:
    series = make_series(reference, pd.date_range("2004-01-01", periods=18, freq="MS"), v=1.0)
    result = deseasonalize(series, "v", baseline=("2004-01-01", "2004-06-01"))
    assert result.excluded == 8
    assert sorted({sample.month for sample in result.series}) == [1, 2, 3, 4, 5]


def test_masked_pixels_excluded_from_climatology(reference, make_series) -> None:
    valid = np.ones(reference.shape, dtype=bool)
    valid[0, 0] = False
    series = make_series(reference, ["2004-01-01", "2005-01-01"], v=lambda k, t: 2.0 + 2.0 * k)
    series = series.map(
        lambda s: s.with_channels(v=Raster.from_array(s["v"].filled(), reference, valid=valid))
        if s.time.year == 2004
        else s
    )
    climatology = monthly_climatology(series, "v")
    assert climatology[1].filled()[0, 0] == pytest.approx(4.0)
    assert climatology[1].filled()[1, 1] == pytest.approx(3.0)
