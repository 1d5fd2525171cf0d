"""Region-mean time series of monthly composites.

These tables are the data behind basin-average storage charts: one row per
composite, one column per channel, each value an area-weighted mean over the
valid pixels of the region.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..data_processing.raster import Raster, RasterTimeSeries, as_decision, ensure_aligned

LOGGER = logging.getLogger(__name__)


def _weights(series: RasterTimeSeries, region: Optional[Raster], pixel_area: Optional[Raster]) -> np.ndarray:
    reference = series.reference
    weights = np.ones(reference.shape, dtype=float)
    if pixel_area is not None:
        ensure_aligned(reference, pixel_area.reference)
        weights = pixel_area.filled(0.0).astype(float)
    if region is not None:
        ensure_aligned(reference, region.reference)
        weights = np.where(as_decision(region), weights, 0.0)
    return weights


def regional_mean(raster: Raster, weights: np.ndarray) -> float:
    """Weighted mean over valid pixels; NaN when no weight remains."""

    keep = raster.valid & (weights > 0)
    total_weight = float(weights[keep].sum())
    if total_weight == 0.0:
        return float("nan")
    values = raster.filled(0.0).astype(float)
    return float((values[keep] * weights[keep]).sum() / total_weight)


def regional_mean_series(
    series: RasterTimeSeries,
    channels: Sequence[str],
    region: Optional[Raster] = None,
    pixel_area: Optional[Raster] = None,
) -> pd.DataFrame:
    """Area-weighted regional means of ``channels`` for every composite.

    Parameters
    ----------
    series:
        Monthly composites.
    channels:
        Channels to summarise.
    region:
        Optional boolean region mask; pixels outside it are ignored.
    pixel_area:
        Optional pixel-area weights; unweighted mean when omitted.

    Returns
    -------
    pandas.DataFrame
        Indexed by composite time (``time``), one column per channel.
    """

    channels = list(channels)
    if not series:
        return pd.DataFrame(columns=channels, index=pd.DatetimeIndex([], name="time"), dtype=float)

    weights = _weights(series, region, pixel_area)
    rows: Dict[str, List[float]] = {channel: [] for channel in channels}
    for sample in series:
        for channel in channels:
            rows[channel].append(regional_mean(sample[channel], weights))

    frame = pd.DataFrame(rows, index=pd.DatetimeIndex(series.times(), name="time"))
    LOGGER.debug("Regional series: %d rows x %d channels", len(frame), len(channels))
    return frame


__all__ = ["regional_mean", "regional_mean_series"]
