"""Pixel-area helpers for regular latitude/longitude grids."""

from __future__ import annotations

import numpy as np

from ..data_processing.raster import Raster, SpatialReference

EARTH_RADIUS_M = 6_371_008.8
GEOGRAPHIC_CRS = ("EPSG:4326", "OGC:CRS84", "WGS84")


def pixel_area_m2(reference: SpatialReference, earth_radius_m: float = EARTH_RADIUS_M) -> Raster:
    """Return the area of every pixel in square metres.

    Cells are treated as spherical quadrilaterals:
    ``A = R² · |Δλ| · |sin φ_top − sin φ_bottom|``.

    Raises
    ------
    ValueError
        If the reference is not a geographic (degree-based) grid.
    """

    if reference.crs.upper() not in GEOGRAPHIC_CRS:
        raise ValueError(
            f"Pixel area can only be derived for geographic grids, got {reference.crs}; "
            "supply a pixel-area raster instead."
        )

    dx, dy = reference.resolution
    lat = reference.y_coords()
    half = abs(dy) / 2.0
    top = np.deg2rad(np.clip(lat + half, -90.0, 90.0))
    bottom = np.deg2rad(np.clip(lat - half, -90.0, 90.0))
    band = earth_radius_m ** 2 * np.deg2rad(abs(dx)) * np.abs(np.sin(top) - np.sin(bottom))
    area = np.repeat(band[:, np.newaxis], reference.shape[1], axis=1)
    return Raster.from_array(area, reference)


__all__ = ["EARTH_RADIUS_M", "pixel_area_m2"]
