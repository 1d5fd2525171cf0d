"""Monthly compositing of irregular or sub-daily raster samples.

Land-surface models are delivered at 3-hourly cadence while gravity
solutions arrive roughly monthly with gaps.  Everything downstream is joined
on calendar month, so each source is first reduced to one composite per month.

Months without any source sample are dropped from the output instead of
being emitted as all-masked placeholders; downstream joins therefore never
see null months.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..utils.time_utils import iter_month_windows
from .raster import BucketKey, Raster, RasterTimeSeries, TimestampedRaster

LOGGER = logging.getLogger(__name__)


def _mean_composite(samples: Sequence[TimestampedRaster], channel: str) -> Raster:
    """Per-pixel mean of unmasked values; pixels masked everywhere stay masked."""

    stack = np.ma.stack([sample[channel].values for sample in samples]).astype(float)
    composite = np.ma.mean(stack, axis=0)
    return Raster(np.ma.asarray(composite), samples[0].reference)


def _mean_time(samples: Sequence[TimestampedRaster], window_start: pd.Timestamp) -> pd.Timestamp:
    """Mean sample time, or ``window_start`` if the mean leaves its calendar month."""

    offsets = pd.TimedeltaIndex([sample.time - window_start for sample in samples])
    mean = window_start + offsets.mean()
    if BucketKey.from_timestamp(mean) != BucketKey.from_timestamp(window_start):
        return window_start
    return mean


def monthly_composites(
    series: RasterTimeSeries,
    start: Any,
    end: Any,
    channels: Sequence[str],
    stamp: str = "start",
) -> RasterTimeSeries:
    """Aggregate ``series`` into one mean composite per month in ``[start, end)``.

    Parameters
    ----------
    series:
        Source samples at any cadence.
    start, end:
        Half-open aggregation interval.  Month windows are anchored on
        ``start``.
    channels:
        Channels to aggregate; other channels are discarded.
    stamp:
        ``"start"`` stamps each composite at its window start; ``"mean"``
        stamps it at the mean time of its contributing samples, falling
        back to the window start when that mean lies in another calendar
        month so the bucket key is unchanged.

    Returns
    -------
    RasterTimeSeries
        One composite per window with at least one contributing sample.

    Raises
    ------
    KeyError
        If a requested channel is missing from a contributing sample.
    ValueError
        If no channel is given or ``stamp`` is unknown.
    """

    channels = list(channels)
    if not channels:
        raise ValueError("At least one channel is required for aggregation")
    if stamp not in ("start", "mean"):
        raise ValueError(f"Unknown composite stamp '{stamp}'; use 'start' or 'mean'")

    samples = list(series.filter_dates(start, end))
    composites: List[TimestampedRaster] = []
    dropped = 0
    cursor = 0

    for window_start, window_end in iter_month_windows(start, end):
        # samples are time ordered, so each window is a contiguous run
        while cursor < len(samples) and samples[cursor].time < window_start:
            cursor += 1
        stop = cursor
        while stop < len(samples) and samples[stop].time < window_end:
            stop += 1
        contributing = samples[cursor:stop]
        cursor = stop

        if not contributing:
            dropped += 1
            LOGGER.debug("No samples in %s; month dropped", f"{window_start:%Y-%m}")
            continue

        composites.append(
            TimestampedRaster(
                window_start if stamp == "start" else _mean_time(contributing, window_start),
                {channel: _mean_composite(contributing, channel) for channel in channels},
            )
        )

    LOGGER.info(
        "Built %d monthly composites (%d empty months dropped) for channels %s",
        len(composites),
        dropped,
        channels,
    )
    return RasterTimeSeries(composites)


def sum_channels(series: RasterTimeSeries, channels: Sequence[str], name: str, keep: bool = False) -> RasterTimeSeries:
    """Add a channel holding the per-pixel sum of ``channels``.

    A pixel masked in any summed channel is masked in the sum.  With
    ``keep=False`` the summed channels are dropped.
    """

    channels = list(channels)
    if not channels:
        raise ValueError("At least one channel is required for summation")

    def _sum(sample: TimestampedRaster) -> TimestampedRaster:
        total = sample[channels[0]]
        for channel in channels[1:]:
            total = total + sample[channel]
        retained: Dict[str, Raster] = {
            key: value for key, value in sample.channels.items() if keep or key not in channels
        }
        retained[name] = total
        return TimestampedRaster(sample.time, retained)

    return series.map(_sum)


def scale_channels(
    series: RasterTimeSeries,
    factor: float,
    rename: Optional[Mapping[str, str]] = None,
) -> RasterTimeSeries:
    """Multiply every channel by ``factor`` (e.g. ``0.1`` for mm to cm).

    ``rename`` maps old channel names to new ones; unlisted channels keep
    their name.
    """

    rename = dict(rename or {})

    def _scale(sample: TimestampedRaster) -> TimestampedRaster:
        return TimestampedRaster(
            sample.time,
            {rename.get(key, key): value * factor for key, value in sample.channels.items()},
        )

    return series.map(_scale)


__all__ = ["monthly_composites", "scale_channels", "sum_channels"]
