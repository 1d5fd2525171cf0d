"""Static permanent-water exclusion mask.

Only a time-invariant mask derived from historical surface-water occurrence
is applied.  Per-scene dynamic water masks are deliberately not supported:
under dense canopy they remove valid land signal.
"""

from __future__ import annotations

import logging

import numpy as np

from .raster import Raster, as_decision

LOGGER = logging.getLogger(__name__)


def build_water_mask(occurrence: Raster, threshold: float = 100.0) -> Raster:
    """Return a boolean keep-mask from an occurrence field.

    Parameters
    ----------
    occurrence:
        Percentage of time each pixel was historically observed as water
        (0–100).  Masked pixels are treated as 0 (never water).
    threshold:
        Pixels with ``occurrence >= threshold`` are rejected.  ``100`` removes
        only permanent water.

    Returns
    -------
    Raster
        Fully valid boolean raster, ``True`` where the pixel is retained.
    """

    if not 0.0 <= float(threshold) <= 100.0:
        raise ValueError(f"Occurrence threshold must lie in [0, 100], got {threshold}")

    filled = occurrence.unmask(0.0)
    keep = ~(np.ma.filled(filled.values, 0.0) >= threshold)
    mask = Raster.from_array(keep, occurrence.reference, dtype=bool)

    LOGGER.info(
        "Water mask (occurrence >= %.1f%% rejected) retains %.1f%% of pixels",
        threshold,
        100.0 * mask_fraction_retained(mask),
    )
    return mask


def mask_fraction_retained(mask: Raster) -> float:
    """Fraction of pixels that are valid and ``True``."""

    keep = as_decision(mask)
    return float(keep.sum()) / float(keep.size)


__all__ = ["build_water_mask", "mask_fraction_retained"]
