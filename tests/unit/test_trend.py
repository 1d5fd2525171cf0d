"""Tests for the per-pixel Theil–Sen trend engine."""

from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")
pd = pytest.importorskip("pandas")
pytest.importorskip("scipy")

from aquifer_proxy.data_processing.raster import MisalignedReferenceError, Raster, RasterTimeSeries
from aquifer_proxy.storage.trend import TrendEngine, theil_sen_fit
from aquifer_proxy.utils.parallel_processing import TileParallelExecutor
from aquifer_proxy.utils.time_utils import elapsed_years

START = pd.Timestamp("2003-01-01")


def _linear(slope, intercept=2.0):
    def value(k, t):
        return intercept + slope * float(elapsed_years([t], START)[0])

    return value


def test_theil_sen_recovers_exact_line() -> None:
    t = np.arange(10, dtype=float)
    slope, offset = theil_sen_fit(t, 3.0 - 0.25 * t)
    assert slope == pytest.approx(-0.25)
    assert offset == pytest.approx(3.0)


def test_theil_sen_resists_outliers() -> None:
    t = np.arange(20, dtype=float)
    y = 1.0 + 0.5 * t
    y[[3, 11]] = [80.0, -60.0]
    slope, _ = theil_sen_fit(t, y)
    assert slope == pytest.approx(0.5)


def test_theil_sen_needs_two_distinct_times() -> None:
    with pytest.raises(ValueError):
        theil_sen_fit([1.0, 1.0], [2.0, 3.0])


def test_linear_series_gives_slope_and_full_completeness(reference, make_series) -> None:
    months = pd.date_range(START, periods=24, freq="MS")
    series = make_series(reference, months, v=_linear(-0.4))

    bundle = TrendEngine().fit(series, "v", START, "2005-01-01", "full")

    np.testing.assert_allclose(bundle.slope.filled(), -0.4, rtol=1e-9)
    np.testing.assert_allclose(bundle.offset.filled(), 2.0, atol=1e-9)
    np.testing.assert_allclose(bundle.goodness_of_fit.filled(), 1.0, atol=1e-9)
    np.testing.assert_array_equal(bundle.observation_count.filled(), 24)
    np.testing.assert_allclose(bundle.completeness.filled(), 1.0)
    assert bundle.expected_months == 24
    assert set(bundle.named_layers()) == {"slope_full", "r2_full", "nObs_full", "completeness_full"}


def test_constant_series_has_zero_slope_and_unit_fit(reference, make_series) -> None:
    series = make_series(reference, pd.date_range(START, periods=12, freq="MS"), v=0.0)
    bundle = TrendEngine().fit(series, "v", START, "2004-01-01", "full")
    np.testing.assert_allclose(bundle.slope.filled(), 0.0)
    np.testing.assert_allclose(bundle.goodness_of_fit.filled(), 1.0)


def test_gaps_reduce_completeness(reference, make_series) -> None:
    months = pd.date_range(START, periods=24, freq="MS")[::2]
    series = make_series(reference, months, v=_linear(0.3))
    bundle = TrendEngine().fit(series, "v", START, "2005-01-01", "gappy")
    np.testing.assert_array_equal(bundle.observation_count.filled(), 12)
    np.testing.assert_allclose(bundle.completeness.filled(), 0.5)
    np.testing.assert_allclose(bundle.slope.filled(), 0.3, rtol=1e-9)


def test_pixel_with_single_observation_has_no_slope(reference, make_series) -> None:
    series = make_series(reference, pd.date_range(START, periods=6, freq="MS"), v=_linear(1.0))
    valid = np.ones(reference.shape, dtype=bool)
    valid[2, 1] = False
    first_time = series.first().time
    series = series.map(
        lambda s: s
        if s.time == first_time
        else s.with_channels(v=Raster.from_array(s["v"].filled(), reference, valid=valid))
    )

    bundle = TrendEngine().fit(series, "v", START, "2003-07-01", "full")

    assert not bundle.slope.valid[2, 1]
    assert not bundle.goodness_of_fit.valid[2, 1]
    assert bundle.observation_count.filled()[2, 1] == 1
    assert bundle.slope.valid[0, 0]


def test_empty_window_yields_masked_layers(reference, make_series) -> None:
    series = make_series(reference, pd.date_range(START, periods=6, freq="MS"), v=1.0)
    bundle = TrendEngine().fit(series, "v", "2010-01-01", "2011-01-01", "late")
    assert bundle.slope.count_valid() == 0
    np.testing.assert_array_equal(bundle.observation_count.filled(), 0)
    np.testing.assert_allclose(bundle.completeness.filled(), 0.0)
    assert bundle.expected_months == 12


def test_empty_series_uses_given_reference(reference) -> None:
    bundle = TrendEngine().fit(RasterTimeSeries(), "v", START, "2004-01-01", "full", reference=reference)
    assert bundle.slope.shape == reference.shape


def test_tiling_does_not_change_results(reference, make_series) -> None:
    rng = np.random.default_rng(0)
    noise = rng.normal(size=(36,) + reference.shape)
    months = pd.date_range(START, periods=36, freq="MS")
    series = make_series(reference, months, v=0.0).map(
        lambda s: s.with_channels(v=Raster.from_array(noise[months.get_loc(s.time)], reference))
    )

    whole = TrendEngine(tile_shape=(8, 8)).fit(series, "v", START, "2006-01-01", "full")
    tiled = TrendEngine(tile_shape=(2, 3)).fit(series, "v", START, "2006-01-01", "full")

    np.testing.assert_array_equal(whole.slope.filled(), tiled.slope.filled())
    np.testing.assert_array_equal(whole.goodness_of_fit.filled(), tiled.goodness_of_fit.filled())


def test_parallel_executor_matches_sequential(reference, make_series) -> None:
    series = make_series(reference, pd.date_range(START, periods=12, freq="MS"), v=_linear(-0.2))
    sequential = TrendEngine(tile_shape=(1, 4)).fit(series, "v", START, "2004-01-01", "full")
    parallel = TrendEngine(TileParallelExecutor(n_processes=2), tile_shape=(1, 4)).fit(
        series, "v", START, "2004-01-01", "full"
    )
    np.testing.assert_array_equal(sequential.slope.filled(), parallel.slope.filled())


def test_invalid_tile_shape() -> None:
    with pytest.raises(ValueError):
        TrendEngine(tile_shape=(0, 4))


def test_min_pairs_leaves_short_records_unfitted(reference, make_series) -> None:
    series = make_series(reference, pd.date_range(START, periods=4, freq="MS"), v=_linear(1.0))
    strict = TrendEngine(min_pairs=5).fit(series, "v", START, "2003-05-01", "full")
    assert strict.slope.count_valid() == 0
    np.testing.assert_array_equal(strict.observation_count.filled(), 4)
    assert TrendEngine(min_pairs=0).min_pairs == 2


def test_given_reference_must_match_series(reference, other_reference, make_series) -> None:
    series = make_series(reference, pd.date_range(START, periods=6, freq="MS"), v=1.0)
    with pytest.raises(MisalignedReferenceError):
        TrendEngine().fit(series, "v", START, "2004-01-01", "full", reference=other_reference)
