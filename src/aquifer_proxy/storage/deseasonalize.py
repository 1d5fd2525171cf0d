"""Monthly-climatology deseasonalisation.

The seasonal cycle dominates storage signals in large tropical basins.  It is
removed by subtracting, from each monthly composite, the per-pixel mean of all
composites sharing its calendar month.  What remains is an anomaly series
suited to trend estimation.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..data_processing.raster import Raster, RasterTimeSeries, TimestampedRaster

LOGGER = logging.getLogger(__name__)

DESEASONALIZED_SUFFIX = "_ds"


@dataclass(frozen=True)
class DeseasonalizedSeries:
    """Deseasonalised composites and the climatology used to build them.

    Attributes
    ----------
    series:
        Input composites that could be deseasonalised, each carrying the
        input channels plus ``<channel>_ds``.
    climatology:
        Per-calendar-month mean raster, keyed by month number (1–12).
    channel:
        Name of the deseasonalised output channel.
    excluded:
        Number of composites dropped because their month had no climatology.
    """

    series: RasterTimeSeries
    climatology: Dict[int, Raster]
    channel: str
    excluded: int = 0


def monthly_climatology(series: RasterTimeSeries, channel: str) -> Dict[int, Raster]:
    """Per-pixel mean of ``channel`` for each calendar month present.

    Pixels masked in a given composite are excluded from that month's mean;
    pixels masked in every composite of a month stay masked.
    """

    climatology: Dict[int, Raster] = {}
    for month in range(1, 13):
        subset = series.filter_month(month)
        if not subset:
            continue
        mean = np.ma.mean(subset.stack(channel).astype(float), axis=0)
        climatology[month] = Raster(np.ma.asarray(mean), subset.reference)
    return climatology


def deseasonalize(
    series: RasterTimeSeries,
    channel: str,
    *,
    baseline: Optional[Tuple[Any, Any]] = None,
) -> DeseasonalizedSeries:
    """Subtract the monthly climatology of ``channel`` from every composite.

    Parameters
    ----------
    series:
        Monthly composites.
    channel:
        Channel to deseasonalise.
    baseline:
        Optional half-open ``(start, end)`` period from which the climatology
        is computed.  Defaults to the whole series.

    Returns
    -------
    DeseasonalizedSeries
        Composites whose calendar month has a climatology; the rest are
        excluded rather than passed through unsubtracted.
    """

    reference_period = series.filter_dates(*baseline) if baseline is not None else series
    climatology = monthly_climatology(reference_period, channel)
    output_channel = channel + DESEASONALIZED_SUFFIX

    kept: List[TimestampedRaster] = []
    excluded = 0
    for sample in series:
        clim = climatology.get(sample.month)
        if clim is None:
            excluded += 1
            LOGGER.debug("No climatology for month %d; %s excluded", sample.month, sample.bucket)
            continue
        kept.append(sample.with_channels(**{output_channel: sample[channel] - clim}))

    if excluded:
        LOGGER.warning("%d composites excluded for lack of a monthly climatology", excluded)
    LOGGER.info("Deseasonalised months: %d", len(kept))

    return DeseasonalizedSeries(
        series=RasterTimeSeries(kept),
        climatology=climatology,
        channel=output_channel,
        excluded=excluded,
    )


__all__ = ["DESEASONALIZED_SUFFIX", "DeseasonalizedSeries", "deseasonalize", "monthly_climatology"]
