"""Conversion of storage-change rates to volumetric change.

A slope in centimetres of equivalent water per year over a pixel of area
``A`` m² corresponds to ``slope / 100 * A`` m³ per year.  Summing over all
qualifying pixels in a region gives the total volumetric change (km³/yr).
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..data_processing.raster import Raster, as_decision, ensure_aligned

LOGGER = logging.getLogger(__name__)

CM_PER_M = 100.0
M3_PER_KM3 = 1e9


def volumetric_rate(slope_cm_per_yr: Raster, pixel_area_m2: Raster) -> Raster:
    """Per-pixel volumetric rate in km³/yr."""

    ensure_aligned(slope_cm_per_yr.reference, pixel_area_m2.reference)
    return slope_cm_per_yr / CM_PER_M * pixel_area_m2 / M3_PER_KM3


def total_volumetric_change(
    volume_km3_per_yr: Raster,
    quality_mask: Raster,
    region: Optional[Raster] = None,
) -> float:
    """Sum the volumetric rate over valid pixels passing ``quality_mask``.

    Parameters
    ----------
    volume_km3_per_yr:
        Output of :func:`volumetric_rate`.
    quality_mask:
        Boolean mask; only ``True`` pixels contribute.
    region:
        Optional boolean region-of-interest mask.

    Returns
    -------
    float
        Total km³/yr; ``0.0`` when no pixel qualifies.
    """

    ensure_aligned(volume_km3_per_yr.reference, quality_mask.reference)
    keep = volume_km3_per_yr.valid & as_decision(quality_mask)
    if region is not None:
        ensure_aligned(volume_km3_per_yr.reference, region.reference)
        keep &= as_decision(region)

    values = np.ma.filled(volume_km3_per_yr.values.astype(float), 0.0)
    total = float(values[keep].sum())
    LOGGER.info("Total volumetric change over %d qualifying pixels: %.4f km3/yr", int(keep.sum()), total)
    return total


__all__ = ["total_volumetric_change", "volumetric_rate"]
