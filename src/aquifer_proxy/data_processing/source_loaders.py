"""Loaders turning gridded source files into raster time series.

**Gravity signal (GRACE/GRACE-FO mascons)**:
total water storage anomaly in liquid-water-equivalent thickness plus its
formal uncertainty.  Both are standardised to ``tws_cm`` / ``tws_unc_cm``.

**Land-surface model (GLDAS Noah, 3-hourly)**:
soil moisture per layer, canopy interception and snow water equivalent, all
in kg m⁻² (equivalent to mm of water).  Unit conversion to centimetres happens
after monthly aggregation in the pipeline.

**Surface-water occurrence (JRC Global Surface Water)**:
static percentage of time each pixel was observed as water.

Remote catalog access is out of scope: these loaders read local NetCDF files
or already-open :class:`xarray.Dataset` objects.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr

from .raster import InsufficientDataError, Raster, RasterTimeSeries, SpatialReference, TimestampedRaster

LOGGER = logging.getLogger(__name__)

DatasetSource = Union[str, Path, xr.Dataset]

Y_DIM_CANDIDATES = ("lat", "latitude", "y")
X_DIM_CANDIDATES = ("lon", "longitude", "x")

GLDAS_SOIL_LAYERS: Tuple[str, ...] = (
    "SoilMoi0_10cm_inst",
    "SoilMoi10_40cm_inst",
    "SoilMoi40_100cm_inst",
    "SoilMoi100_200cm_inst",
)
GLDAS_CANOPY = "CanopInt_inst"
GLDAS_SWE = "SWE_inst"


# ---------------------------------------------------------------------------
# Generic conversion
# ---------------------------------------------------------------------------

def open_source(source: DatasetSource, pattern: str = "*.nc") -> xr.Dataset:
    """Open a dataset from a file, a directory of files, or pass one through."""

    if isinstance(source, xr.Dataset):
        return source

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Source not found: {path}")

    if path.is_dir():
        files = sorted(path.glob(pattern))
        if not files:
            raise FileNotFoundError(
                f"No files found\n"
                f"  directory: {path}\n"
                f"  pattern: {pattern}"
            )
        LOGGER.info("Found %d files in %s", len(files), path)
        return xr.open_mfdataset(files, combine="by_coords")

    return xr.open_dataset(path)


def _find_dim(ds: xr.Dataset, candidates: Sequence[str]) -> str:
    for name in candidates:
        if name in ds.dims:
            return name
    raise ValueError(f"Dimension not found. Tried: {list(candidates)}; dataset has {list(ds.dims)}")


def reference_from_dataset(ds: xr.Dataset, crs: Optional[str] = None) -> SpatialReference:
    """Derive the :class:`SpatialReference` of a gridded dataset."""

    y_dim = _find_dim(ds, Y_DIM_CANDIDATES)
    x_dim = _find_dim(ds, X_DIM_CANDIDATES)
    crs = crs or str(ds.attrs.get("crs", "EPSG:4326"))
    return SpatialReference.from_coords(ds[y_dim].values, ds[x_dim].values, crs=crs)


def dataset_to_series(
    ds: xr.Dataset,
    variables: Sequence[str],
    reference: Optional[SpatialReference] = None,
    time_dim: str = "time",
) -> RasterTimeSeries:
    """Convert ``(time, y, x)`` variables into a :class:`RasterTimeSeries`.

    ``NaN`` values become masked pixels.
    """

    missing = [name for name in variables if name not in ds.data_vars]
    if missing:
        raise KeyError(f"Variables missing from dataset: {missing}")

    reference = reference or reference_from_dataset(ds)
    y_dim = _find_dim(ds, Y_DIM_CANDIDATES)
    x_dim = _find_dim(ds, X_DIM_CANDIDATES)

    arrays = {
        name: np.asarray(ds[name].transpose(time_dim, y_dim, x_dim).values, dtype=float)
        for name in variables
    }
    times = pd.DatetimeIndex(ds[time_dim].values)

    samples: List[TimestampedRaster] = []
    for i, time in enumerate(times):
        samples.append(
            TimestampedRaster(time, {name: Raster.from_array(arrays[name][i], reference) for name in variables})
        )
    return RasterTimeSeries(samples)


def _to_centimetres(data: xr.DataArray) -> xr.DataArray:
    units = str(data.attrs.get("units", "cm")).strip().lower()
    factors = {"cm": 1.0, "mm": 0.1, "m": 100.0}
    if units not in factors:
        raise ValueError(f"Unsupported length unit '{units}' for {data.name}")
    if factors[units] == 1.0:
        return data
    converted = data * factors[units]
    converted.attrs = dict(data.attrs, units="cm")
    return converted


# ---------------------------------------------------------------------------
# Source-specific loaders
# ---------------------------------------------------------------------------

class GravityDataLoader:
    """Loader for GRACE/GRACE-FO mascon total-water-storage anomalies.

    Parameters
    ----------
    storage_variable, uncertainty_variable:
        Source variable names, standardised to ``tws_cm`` and ``tws_unc_cm``.
    """

    STORAGE_CHANNEL = "tws_cm"
    UNCERTAINTY_CHANNEL = "tws_unc_cm"

    def __init__(self, storage_variable: str = "lwe_thickness", uncertainty_variable: str = "uncertainty") -> None:
        self.storage_variable = storage_variable
        self.uncertainty_variable = uncertainty_variable

    def standardise(self, ds: xr.Dataset) -> xr.Dataset:
        renames: Dict[str, str] = {}
        for source, target in (
            (self.storage_variable, self.STORAGE_CHANNEL),
            (self.uncertainty_variable, self.UNCERTAINTY_CHANNEL),
        ):
            if source in ds.data_vars:
                renames[source] = target
            elif target not in ds.data_vars:
                raise KeyError(f"Gravity dataset lacks '{source}' (or '{target}')")
        ds = ds.rename(renames)
        for channel in (self.STORAGE_CHANNEL, self.UNCERTAINTY_CHANNEL):
            ds[channel] = _to_centimetres(ds[channel])
        return ds

    def load(self, source: DatasetSource, reference: Optional[SpatialReference] = None) -> RasterTimeSeries:
        ds = self.standardise(open_source(source))
        series = dataset_to_series(ds, [self.STORAGE_CHANNEL, self.UNCERTAINTY_CHANNEL], reference)
        if series:
            LOGGER.info(
                "Loaded %d gravity solutions (%s to %s)",
                len(series),
                f"{series.first().time:%Y-%m-%d}",
                f"{series.last().time:%Y-%m-%d}",
            )
        return series


class LandSurfaceDataLoader:
    """Loader for land-surface-model storage components (GLDAS naming)."""

    def __init__(
        self,
        soil_layers: Sequence[str] = GLDAS_SOIL_LAYERS,
        canopy_variable: str = GLDAS_CANOPY,
        swe_variable: str = GLDAS_SWE,
    ) -> None:
        self.soil_layers = tuple(soil_layers)
        self.canopy_variable = canopy_variable
        self.swe_variable = swe_variable

    @property
    def variables(self) -> List[str]:
        return [*self.soil_layers, self.canopy_variable, self.swe_variable]

    def load(self, source: DatasetSource, reference: Optional[SpatialReference] = None) -> RasterTimeSeries:
        ds = open_source(source)
        series = dataset_to_series(ds, self.variables, reference)
        LOGGER.info("Loaded %d land-surface samples", len(series))
        return series


class OccurrenceDataLoader:
    """Loader for the static surface-water occurrence percentage."""

    def __init__(self, variable: str = "occurrence") -> None:
        self.variable = variable

    def load(self, source: DatasetSource, reference: Optional[SpatialReference] = None) -> Raster:
        ds = open_source(source)
        if self.variable not in ds.data_vars:
            raise KeyError(f"Occurrence dataset lacks '{self.variable}'")
        data = ds[self.variable].squeeze(drop=True)
        reference = reference or reference_from_dataset(ds)
        y_dim = _find_dim(ds, Y_DIM_CANDIDATES)
        x_dim = _find_dim(ds, X_DIM_CANDIDATES)
        return Raster.from_array(np.asarray(data.transpose(y_dim, x_dim).values, dtype=float), reference)


# ---------------------------------------------------------------------------
# End-date capping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EndDateCap:
    """Requested versus effective end of the analysis period."""

    requested: pd.Timestamp
    last_available: pd.Timestamp
    effective: pd.Timestamp

    @property
    def capped(self) -> bool:
        return self.effective != self.requested


def cap_end_date(requested_end: Any, gravity: RasterTimeSeries, buffer: pd.Timedelta = pd.Timedelta(days=1)) -> EndDateCap:
    """Cap a requested end date to the latest gravity solution.

    When ``requested_end`` lies beyond the last available sample the
    effective end becomes ``last + buffer`` so that the final sample still
    falls inside the end-exclusive window.

    Raises
    ------
    InsufficientDataError
        If the gravity series is empty.
    """

    requested = pd.Timestamp(requested_end)
    if not gravity:
        raise InsufficientDataError("No gravity solutions available to cap the end date against")

    last = gravity.last().time
    effective = requested if requested <= last else last + buffer

    LOGGER.info("Requested end date %s", f"{requested:%Y-%m-%d}")
    LOGGER.info("Gravity last date %s", f"{last:%Y-%m-%d}")
    if effective != requested:
        LOGGER.warning("Effective end date capped to %s", f"{effective:%Y-%m-%d}")

    return EndDateCap(requested=requested, last_available=last, effective=effective)


__all__ = [
    "EndDateCap",
    "GLDAS_CANOPY",
    "GLDAS_SOIL_LAYERS",
    "GLDAS_SWE",
    "GravityDataLoader",
    "LandSurfaceDataLoader",
    "OccurrenceDataLoader",
    "cap_end_date",
    "dataset_to_series",
    "open_source",
    "reference_from_dataset",
]
