"""Tests for the storage-residual compositor and the monthly inner join."""

from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")
pd = pytest.importorskip("pandas")

from aquifer_proxy.data_processing.raster import MisalignedReferenceError, Raster, as_decision
from aquifer_proxy.storage.residual import (
    MASKED_RESIDUAL_CHANNEL,
    NON_TARGET_CHANNEL,
    RESIDUAL_CHANNEL,
    ResidualCompositionError,
    StorageResidualCompositor,
    inner_join,
)


@pytest.fixture()
def keep_all(reference) -> Raster:
    return Raster.from_array(np.ones(reference.shape, dtype=bool), reference, dtype=bool)


def test_residual_is_tws_minus_land_surface(reference, make_series, keep_all) -> None:
    months = pd.date_range("2004-01-01", periods=3, freq="MS")
    gravity = make_series(reference, months, tws_cm=10.0)
    soil = make_series(reference, months, soil_cm=4.0)
    surface = make_series(reference, months, canopy_cm=1.0, swe_cm=0.0)

    storage = StorageResidualCompositor().compose([gravity, soil, surface], keep_all)

    assert len(storage) == 3
    sample = storage.first()
    np.testing.assert_allclose(sample[NON_TARGET_CHANNEL].filled(), 5.0)
    np.testing.assert_allclose(sample[RESIDUAL_CHANNEL].filled(), 5.0)
    np.testing.assert_allclose(sample[MASKED_RESIDUAL_CHANNEL].filled(), 5.0)


def test_join_keeps_only_months_in_every_source(reference, make_series, keep_all) -> None:
    gravity = make_series(reference, ["2004-01-01", "2004-02-01", "2004-04-01"], tws_cm=10.0)
    soil = make_series(reference, ["2004-01-01", "2004-02-01", "2004-03-01", "2004-04-01"], soil_cm=4.0)
    surface = make_series(reference, ["2004-02-01", "2004-03-01", "2004-04-01"], canopy_cm=1.0, swe_cm=0.0)

    storage = StorageResidualCompositor().compose([gravity, soil, surface], keep_all)

    assert storage.buckets() == [(2004, 2), (2004, 4)]


def test_water_mask_masks_residual_only(reference, make_series) -> None:
    keep = np.ones(reference.shape, dtype=bool)
    keep[1, 2] = False
    water_mask = Raster.from_array(keep, reference, dtype=bool)
    months = ["2004-01-01"]
    storage = StorageResidualCompositor().compose(
        [
            make_series(reference, months, tws_cm=10.0),
            make_series(reference, months, soil_cm=4.0, canopy_cm=1.0, swe_cm=0.0),
        ],
        water_mask,
    )
    sample = storage.first()
    assert sample[RESIDUAL_CHANNEL].valid[1, 2]
    assert not sample[MASKED_RESIDUAL_CHANNEL].valid[1, 2]
    assert as_decision(sample["dyn_mask"]).sum() == 11


def test_masked_input_propagates(reference, make_series, keep_all) -> None:
    gravity_values = np.full(reference.shape, 10.0)
    gravity_values[0, 0] = np.nan
    months = ["2004-01-01"]
    gravity = make_series(reference, months, tws_cm=10.0).map(
        lambda s: s.with_channels(tws_cm=Raster.from_array(gravity_values, reference))
    )
    storage = StorageResidualCompositor().compose(
        [gravity, make_series(reference, months, soil_cm=4.0, canopy_cm=1.0, swe_cm=0.0)], keep_all
    )
    assert not storage.first()[RESIDUAL_CHANNEL].valid[0, 0]


def test_join_rejects_non_monthly_source(reference, make_series) -> None:
    daily = make_series(reference, ["2004-01-01", "2004-01-02"], tws_cm=1.0)
    with pytest.raises(ValueError):
        inner_join([daily])


def test_join_rejects_channel_collision(reference, make_series) -> None:
    a = make_series(reference, ["2004-01-01"], tws_cm=1.0)
    b = make_series(reference, ["2004-01-01"], tws_cm=2.0)
    with pytest.raises(ResidualCompositionError):
        inner_join([a, b])


def test_join_rejects_misaligned_sources(reference, other_reference, make_series) -> None:
    a = make_series(reference, ["2004-01-01"], tws_cm=1.0)
    b = make_series(other_reference, ["2004-01-01"], soil_cm=2.0)
    with pytest.raises(MisalignedReferenceError):
        inner_join([a, b])


def test_missing_component_channel(reference, make_series, keep_all) -> None:
    months = ["2004-01-01"]
    with pytest.raises(ResidualCompositionError):
        StorageResidualCompositor().compose(
            [make_series(reference, months, tws_cm=10.0), make_series(reference, months, soil_cm=4.0)], keep_all
        )


def test_months_subset(reference, make_series, keep_all) -> None:
    months = pd.date_range("2004-01-01", periods=4, freq="MS")
    storage = StorageResidualCompositor().compose(
        [
            make_series(reference, months, tws_cm=10.0),
            make_series(reference, months, soil_cm=4.0, canopy_cm=1.0, swe_cm=0.0),
        ],
        keep_all,
        months=[(2004, 2), (2004, 3)],
    )
    assert storage.buckets() == [(2004, 2), (2004, 3)]
