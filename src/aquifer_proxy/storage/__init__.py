"""Storage-residual, deseasonalisation, trend and classification stages."""

from .residual import (
    MASKED_RESIDUAL_CHANNEL,
    ResidualCompositionError,
    StorageResidualCompositor,
    inner_join,
)
from .deseasonalize import DeseasonalizedSeries, deseasonalize, monthly_climatology
from .trend import TrendBundle, TrendEngine, theil_sen_fit
from .classification import (
    HotspotClass,
    StabilityLayers,
    channel_mean,
    classify_hotspots,
    hotspot_overlap,
    quality_mask,
    slope_signal_to_noise,
    split_record_stability,
)
from .volumetric import total_volumetric_change, volumetric_rate

__all__ = [
    "DeseasonalizedSeries",
    "HotspotClass",
    "MASKED_RESIDUAL_CHANNEL",
    "ResidualCompositionError",
    "StabilityLayers",
    "StorageResidualCompositor",
    "TrendBundle",
    "TrendEngine",
    "channel_mean",
    "classify_hotspots",
    "deseasonalize",
    "hotspot_overlap",
    "inner_join",
    "monthly_climatology",
    "quality_mask",
    "slope_signal_to_noise",
    "split_record_stability",
    "theil_sen_fit",
    "total_volumetric_change",
    "volumetric_rate",
]
