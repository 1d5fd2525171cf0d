"""Raster primitives, source loaders and temporal/static preprocessing."""

from .raster import (
    BucketKey,
    InsufficientDataError,
    MisalignedReferenceError,
    Raster,
    RasterTimeSeries,
    SpatialReference,
    TimestampedRaster,
    as_decision,
    ensure_aligned,
    mask_and,
    mask_or,
)
from .temporal_binning import monthly_composites, scale_channels, sum_channels
from .water_mask import build_water_mask, mask_fraction_retained
from .source_loaders import (
    EndDateCap,
    GravityDataLoader,
    LandSurfaceDataLoader,
    OccurrenceDataLoader,
    cap_end_date,
    dataset_to_series,
)

__all__ = [
    "BucketKey",
    "EndDateCap",
    "GravityDataLoader",
    "InsufficientDataError",
    "LandSurfaceDataLoader",
    "MisalignedReferenceError",
    "OccurrenceDataLoader",
    "Raster",
    "RasterTimeSeries",
    "SpatialReference",
    "TimestampedRaster",
    "as_decision",
    "build_water_mask",
    "cap_end_date",
    "dataset_to_series",
    "ensure_aligned",
    "mask_and",
    "mask_fraction_retained",
    "mask_or",
    "monthly_composites",
    "scale_channels",
    "sum_channels",
]
