"""Residual groundwater-storage proxy from gravity and land-surface storage.

Total water storage (TWS) from gravimetry includes surface water, soil
moisture, canopy interception, snow and groundwater.  Subtracting the
land-surface-model components leaves a residual that serves as a
groundwater-storage proxy::

    non_gw = soil + canopy + swe
    gws_residual = tws - non_gw

Sources are joined on calendar month with inner-join semantics: a month is
kept only when every source has a composite for it.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from ..data_processing.raster import (
    BucketKey,
    Raster,
    RasterTimeSeries,
    TimestampedRaster,
    ensure_aligned,
)

LOGGER = logging.getLogger(__name__)

NON_TARGET_CHANNEL = "non_gw_cm"
RESIDUAL_CHANNEL = "gws_residual_cm"
MASKED_RESIDUAL_CHANNEL = "gws_residual_masked_cm"
MASK_CHANNEL = "dyn_mask"


class ResidualCompositionError(RuntimeError):
    """Raised when the residual storage proxy cannot be computed."""


def inner_join(sources: Sequence[RasterTimeSeries]) -> RasterTimeSeries:
    """Join monthly series on bucket key, keeping months present in all.

    Channels are merged per month; the timestamp of the first source is kept.
    Channel names must not collide across sources.

    Raises
    ------
    ValueError
        If a source is not monthly (duplicate bucket keys).
    ResidualCompositionError
        If two sources provide a channel with the same name.
    """

    if not sources:
        raise ResidualCompositionError("No sources supplied for the join.")
    for position, source in enumerate(sources):
        if not source.is_monthly:
            raise ValueError(f"Source {position} is not a monthly series; aggregate it first.")
    non_empty = [source for source in sources if source]
    if len(non_empty) == len(sources):
        ensure_aligned(*(source.reference for source in sources))

    common = set(sources[0].buckets())
    for source in sources[1:]:
        common &= set(source.buckets())

    joined: List[TimestampedRaster] = []
    for key in sorted(common):
        primary = sources[0][key]
        channels: Dict[str, Raster] = dict(primary.channels)
        for source in sources[1:]:
            secondary = source[key]
            clash = set(channels) & set(secondary.channels)
            if clash:
                raise ResidualCompositionError(f"Channel name collision in join for {key}: {sorted(clash)}")
            channels.update(secondary.channels)
        joined.append(TimestampedRaster(primary.time, channels))

    LOGGER.info(
        "Matched months: %d (source sizes %s)",
        len(joined),
        [len(source) for source in sources],
    )
    return RasterTimeSeries(joined)


class StorageResidualCompositor:
    """Combine matched monthly fields into the residual storage proxy.

    Parameters
    ----------
    primary_channel:
        Total-water-storage channel of the gravity source.
    non_target_channels:
        Land-surface storage channels summed into ``non_gw_cm``.
    """

    def __init__(
        self,
        *,
        primary_channel: str = "tws_cm",
        non_target_channels: Sequence[str] = ("soil_cm", "canopy_cm", "swe_cm"),
    ) -> None:
        if not non_target_channels:
            raise ResidualCompositionError("At least one non-target channel is required.")
        self.primary_channel = primary_channel
        self.non_target_channels = tuple(non_target_channels)

    def compose_month(self, sample: TimestampedRaster, water_mask: Raster) -> TimestampedRaster:
        """Add residual channels to one joined composite."""

        required = (self.primary_channel, *self.non_target_channels)
        missing = [name for name in required if name not in sample]
        if missing:
            raise ResidualCompositionError(
                f"Composite for {sample.bucket} lacks channels {missing}; have {list(sample.channel_names)}"
            )

        non_target = sample[self.non_target_channels[0]]
        for name in self.non_target_channels[1:]:
            non_target = non_target + sample[name]
        residual = sample[self.primary_channel] - non_target

        return sample.with_channels(
            **{
                NON_TARGET_CHANNEL: non_target,
                RESIDUAL_CHANNEL: residual,
                MASKED_RESIDUAL_CHANNEL: residual.update_mask(water_mask),
                MASK_CHANNEL: water_mask,
            }
        )

    def compose(
        self,
        sources: Sequence[RasterTimeSeries],
        water_mask: Raster,
        *,
        months: Optional[Sequence[BucketKey]] = None,
    ) -> RasterTimeSeries:
        """Join ``sources`` by month and compute the residual per month.

        Parameters
        ----------
        sources:
            Monthly series; together they must provide the primary and all
            non-target channels.
        water_mask:
            Static keep-mask applied to the residual.
        months:
            Optional subset of buckets to compose.

        Returns
        -------
        RasterTimeSeries
            One composite per matched month holding the input channels plus
            ``non_gw_cm``, ``gws_residual_cm``, ``gws_residual_masked_cm`` and
            ``dyn_mask``.
        """

        joined = inner_join(sources)
        if joined:
            ensure_aligned(joined.reference, water_mask.reference)
        if months is not None:
            wanted = {BucketKey(*key) for key in months}
            joined = RasterTimeSeries(sample for sample in joined if sample.bucket in wanted)

        storage = joined.map(lambda sample: self.compose_month(sample, water_mask))
        LOGGER.info("Storage months: %d", len(storage))
        return storage


__all__ = [
    "MASKED_RESIDUAL_CHANNEL",
    "MASK_CHANNEL",
    "NON_TARGET_CHANNEL",
    "RESIDUAL_CHANNEL",
    "ResidualCompositionError",
    "StorageResidualCompositor",
    "inner_join",
]
