"""Quality gating, hotspot classification and trend-stability layers.

All functions here are small pure transforms over already computed rasters.
A quality gate combines the three trend confidence proxies into a boolean
mask; hotspots are graded from the slope within that mask.  Split-record
layers compare early and late slopes, and a signal-to-noise proxy relates
the full-record slope to the mean gravity-solution uncertainty.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging

import numpy as np

from ..config import QualityGate
from ..data_processing.raster import Raster, RasterTimeSeries, as_decision, ensure_aligned, mask_and
from .trend import TrendBundle

LOGGER = logging.getLogger(__name__)


class HotspotClass(IntEnum):
    """Severity of long-term decline."""

    NONE = 0
    MODERATE = 1
    SEVERE = 2


@dataclass(frozen=True, eq=False)
class StabilityLayers:
    """Split-record agreement between early and late trend windows.

    Attributes
    ----------
    sign_agree:
        ``True`` where both slopes are strictly positive or both strictly
        negative.
    drying_stable:
        ``True`` where both slopes fall below the moderate threshold.
    """

    sign_agree: Raster
    drying_stable: Raster


def quality_mask(bundle: TrendBundle, gate: QualityGate) -> Raster:
    """Return the pass/fail mask of ``gate`` for a trend bundle.

    The mask is fully valid; pixels with masked inputs fail.
    """

    passes = mask_and(
        mask_and(
            bundle.observation_count.ge(gate.min_observations),
            bundle.goodness_of_fit.ge(gate.min_goodness_of_fit),
        ),
        bundle.completeness.ge(gate.min_completeness),
    )
    decision = as_decision(passes)
    LOGGER.debug("Gate %s passes %d pixels", gate, int(decision.sum()))
    return Raster.from_array(decision, bundle.slope.reference, dtype=bool)


def classify_hotspots(slope: Raster, qmask: Raster, severe_threshold: float, moderate_threshold: float) -> Raster:
    """Grade each pixel passing ``qmask`` as none, moderate or severe decline.

    ``slope < severe`` is severe, ``severe <= slope < moderate`` is moderate,
    anything else is none.  Pixels failing the mask, or without a slope,
    carry no class.
    """

    if not severe_threshold < moderate_threshold:
        raise ValueError(
            f"severe_threshold ({severe_threshold}) must be below moderate_threshold ({moderate_threshold})"
        )
    ensure_aligned(slope.reference, qmask.reference)

    values = np.ma.filled(slope.values.astype(float), np.nan)
    classes = np.full(values.shape, HotspotClass.NONE, dtype=np.int8)
    classes[(values >= severe_threshold) & (values < moderate_threshold)] = HotspotClass.MODERATE
    classes[values < severe_threshold] = HotspotClass.SEVERE

    keep = as_decision(qmask) & slope.valid
    return Raster.from_array(classes, slope.reference, valid=keep, dtype=np.int8)


def hotspot_overlap(first: Raster, second: Raster) -> Raster:
    """Pixels flagged as hotspot (class above none) by both classifications."""

    return mask_and(first.gt(HotspotClass.NONE), second.gt(HotspotClass.NONE))


def split_record_stability(early_slope: Raster, late_slope: Raster, moderate_threshold: float) -> StabilityLayers:
    """Compare early and late slopes; outputs are valid where both slopes are."""

    ensure_aligned(early_slope.reference, late_slope.reference)
    early = np.ma.filled(early_slope.values.astype(float), np.nan)
    late = np.ma.filled(late_slope.values.astype(float), np.nan)
    valid = early_slope.valid & late_slope.valid

    agree = ((early > 0) & (late > 0)) | ((early < 0) & (late < 0))
    drying = (early < moderate_threshold) & (late < moderate_threshold)

    reference = early_slope.reference
    return StabilityLayers(
        sign_agree=Raster.from_array(agree, reference, valid=valid, dtype=bool),
        drying_stable=Raster.from_array(drying, reference, valid=valid, dtype=bool),
    )


def channel_mean(series: RasterTimeSeries, channel: str) -> Raster:
    """Per-pixel temporal mean of ``channel`` over unmasked samples."""

    mean = np.ma.mean(series.stack(channel).astype(float), axis=0)
    return Raster(np.ma.asarray(mean), series.reference)


def slope_signal_to_noise(slope: Raster, uncertainty_mean: Raster) -> Raster:
    """``|slope| / mean uncertainty`` with a zero denominator replaced by 1."""

    ensure_aligned(slope.reference, uncertainty_mean.reference)
    denominator = np.ma.where(uncertainty_mean.values == 0, 1.0, uncertainty_mean.values)
    return abs(slope) / Raster(np.ma.asarray(denominator), uncertainty_mean.reference)


__all__ = [
    "HotspotClass",
    "StabilityLayers",
    "channel_mean",
    "classify_hotspots",
    "hotspot_overlap",
    "quality_mask",
    "slope_signal_to_noise",
    "split_record_stability",
]
