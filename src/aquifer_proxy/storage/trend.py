"""Per-pixel robust trend estimation over arbitrary date windows.

The Theil–Sen estimator (median of all pairwise slopes) is used instead of
ordinary least squares: it tolerates outlier months and the seasonal ringing
that survives climatology subtraction.  Alongside slope and offset the engine
reports three confidence proxies per pixel:

* ``observation_count`` – unmasked samples used in the fit;
* ``goodness_of_fit``   – ``1 - SSE/SST`` around the fitted line, with a zero
  (or round-off sized) ``SST`` replaced by ``1``;
* ``completeness``      – ``observation_count / max(1, expected_months)``,
  where ``expected_months`` counts month steps in the same half-open window
  used to select composites (no ``+1`` adjustment).

The median of pairwise slopes has no closed vectorised form, so the grid is
split into tiles and each tile's pixel stack is fitted independently through
:class:`~aquifer_proxy.utils.parallel_processing.TileParallelExecutor`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..data_processing.raster import Raster, RasterTimeSeries, SpatialReference, ensure_aligned
from ..utils.metrics import goodness_of_fit
from ..utils.parallel_processing import Tile, TileParallelExecutor, split_tiles
from ..utils.time_utils import count_months, elapsed_years

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class TrendBundle:
    """Trend outputs for one date window and one named variant."""

    label: str
    window_start: pd.Timestamp
    window_end: pd.Timestamp
    slope: Raster
    offset: Raster
    goodness_of_fit: Raster
    observation_count: Raster
    completeness: Raster
    expected_months: int

    def named_layers(self) -> Dict[str, Raster]:
        """Output rasters under their per-window channel names."""

        return {
            f"slope_{self.label}": self.slope,
            f"r2_{self.label}": self.goodness_of_fit,
            f"nObs_{self.label}": self.observation_count,
            f"completeness_{self.label}": self.completeness,
        }


def theil_sen_fit(t: np.ndarray, y: np.ndarray) -> Tuple[float, float]:
    """Return Theil–Sen ``(slope, offset)`` for one pixel.

    The offset is ``median(y - slope * t)``.  At least two distinct ``t``
    values are required.
    """

    t = np.asarray(t, dtype=float)
    y = np.asarray(y, dtype=float)
    if np.unique(t).size < 2:
        raise ValueError("Theil–Sen needs at least two distinct time values")
    result = stats.theilslopes(y, t, method="joint")
    return float(result[0]), float(result[1])


def _fit_tile(
    tile: Tile, *, t: np.ndarray, y: np.ndarray, valid: np.ndarray, min_pairs: int = 2
) -> Dict[str, np.ndarray]:
    """Fit every pixel of a tile; ``y``/``valid`` are ``(time, rows, cols)``."""

    rows, cols = tile.shape
    slope = np.full((rows, cols), np.nan)
    offset = np.full((rows, cols), np.nan)
    fit = np.full((rows, cols), np.nan)
    count = valid.sum(axis=0).astype(np.int32)

    for r in range(rows):
        for c in range(cols):
            keep = valid[:, r, c]
            tt = t[keep]
            if np.unique(tt).size < min_pairs:
                continue
            yy = y[keep, r, c]
            s, o = theil_sen_fit(tt, yy)
            slope[r, c] = s
            offset[r, c] = o
            fit[r, c] = goodness_of_fit(yy, o + s * tt)

    return {"slope": slope, "offset": offset, "goodness_of_fit": fit, "count": count}


class TrendEngine:
    """Fit per-pixel Theil–Sen trends for a channel over a date window.

    Parameters
    ----------
    executor:
        Tile executor; defaults to sequential execution.
    tile_shape:
        ``(rows, cols)`` of the tiles handed to workers.
    min_pairs:
        Minimum number of distinct sample times for a pixel to be fitted;
        never below two.
    """

    def __init__(
        self,
        executor: Optional[TileParallelExecutor] = None,
        tile_shape: Tuple[int, int] = (32, 32),
        min_pairs: int = 2,
    ) -> None:
        if tile_shape[0] < 1 or tile_shape[1] < 1:
            raise ValueError("tile_shape entries must be at least 1")
        self.executor = executor or TileParallelExecutor(n_processes=1)
        self.tile_shape = (int(tile_shape[0]), int(tile_shape[1]))
        self.min_pairs = max(2, int(min_pairs))

    def fit(
        self,
        series: RasterTimeSeries,
        channel: str,
        window_start: Any,
        window_end: Any,
        label: str,
        reference: Optional[SpatialReference] = None,
    ) -> TrendBundle:
        """Build the :class:`TrendBundle` for ``[window_start, window_end)``.

        Parameters
        ----------
        series:
            Deseasonalised monthly composites.
        channel:
            Channel holding the regressand.
        window_start, window_end:
            Half-open selection window; elapsed time is measured in
            fractional years from ``window_start``.
        label:
            Variant name used in output layer names (``full``, ``early``...).
        reference:
            Grid for the outputs when the window selects nothing.  Defaults
            to the series reference.

        Raises
        ------
        MisalignedReferenceError
            If ``reference`` differs from the reference of a non-empty
            ``series``.
        """

        window_start, window_end = pd.Timestamp(window_start), pd.Timestamp(window_end)
        expected = count_months(window_start, window_end)
        window = series.filter_dates(window_start, window_end)
        if reference is None:
            reference = series.reference
        elif series:
            ensure_aligned(reference, series.reference)

        if not window:
            LOGGER.warning(
                "Trend window '%s' [%s, %s) selects no composites",
                label,
                f"{window_start:%Y-%m-%d}",
                f"{window_end:%Y-%m-%d}",
            )
            zeros = np.zeros(reference.shape)
            return TrendBundle(
                label=label,
                window_start=window_start,
                window_end=window_end,
                slope=Raster.masked(reference),
                offset=Raster.masked(reference),
                goodness_of_fit=Raster.masked(reference),
                observation_count=Raster.from_array(zeros, reference, dtype=np.int32),
                completeness=Raster.from_array(zeros, reference),
                expected_months=expected,
            )

        t = elapsed_years(window.times(), window_start)
        stack = window.stack(channel).astype(float)
        y = np.ma.filled(stack, np.nan)
        valid = ~np.ma.getmaskarray(stack) & np.isfinite(y)

        tiles = split_tiles(reference.shape, self.tile_shape)
        tasks = [
            (
                tile,
                {
                    "t": t,
                    "y": y[(slice(None),) + tile.index],
                    "valid": valid[(slice(None),) + tile.index],
                    "min_pairs": self.min_pairs,
                },
            )
            for tile in tiles
        ]
        LOGGER.debug("Fitting '%s' over %d composites in %d tiles", label, len(window), len(tiles))
        results = self.executor.map_tiles(_fit_tile, tasks, description=f"Theil-Sen ({label})")

        slope = np.full(reference.shape, np.nan)
        offset = np.full(reference.shape, np.nan)
        fit = np.full(reference.shape, np.nan)
        count = np.zeros(reference.shape, dtype=np.int32)
        for tile, result in zip(tiles, results):
            slope[tile.index] = result["slope"]
            offset[tile.index] = result["offset"]
            fit[tile.index] = result["goodness_of_fit"]
            count[tile.index] = result["count"]

        completeness = count / max(1, expected)

        LOGGER.info(
            "Trend '%s': %d composites, %d expected months, %d fitted pixels",
            label,
            len(window),
            expected,
            int(np.isfinite(slope).sum()),
        )

        return TrendBundle(
            label=label,
            window_start=window_start,
            window_end=window_end,
            slope=Raster.from_array(slope, reference),
            offset=Raster.from_array(offset, reference),
            goodness_of_fit=Raster.from_array(fit, reference),
            observation_count=Raster.from_array(count, reference, dtype=np.int32),
            completeness=Raster.from_array(completeness, reference),
            expected_months=expected,
        )


__all__ = ["TrendBundle", "TrendEngine", "theil_sen_fit"]
