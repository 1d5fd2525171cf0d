from pathlib import Path
import sys

import pytest

repo_root = Path(__file__).resolve().parents[1]
# Make the package importable from a source checkout without installation.
src_str = str(repo_root / "src")
if src_str not in sys.path:
	sys.path.insert(0, src_str)

import pandas as pd  # noqa: E402

from aquifer_proxy.data_processing.raster import (  # noqa: E402
	Raster,
	RasterTimeSeries,
	SpatialReference,
	TimestampedRaster,
)


@pytest.fixture()
def reference() -> SpatialReference:
	"""A 3x4 north-up quarter-degree grid over the Amazon."""

	return SpatialReference(shape=(3, 4), origin=(-60.0, -3.0), resolution=(0.25, -0.25))


@pytest.fixture()
def other_reference() -> SpatialReference:
	return SpatialReference(shape=(3, 4), origin=(-50.0, -3.0), resolution=(0.25, -0.25))


def constant_series(reference, times, **channels):
	"""Series whose channels hold a constant (or per-time callable) value everywhere."""

	samples = []
	for k, time in enumerate(pd.DatetimeIndex(times)):
		rasters = {}
		for name, value in channels.items():
			v = value(k, time) if callable(value) else value
			rasters[name] = Raster.full(float(v), reference)
		samples.append(TimestampedRaster(time, rasters))
	return RasterTimeSeries(samples)


@pytest.fixture()
def make_series():
	return constant_series
