"""Raster primitives shared by every stage of the storage-trend pipeline.

A :class:`Raster` is an immutable 2-D field over a :class:`SpatialReference`
in which each pixel is either valid or masked.  Values are held in a
:class:`numpy.ma.MaskedArray`, so masking propagates through arithmetic the
same way it does in the rest of the NumPy ecosystem: the result of combining
two rasters is masked wherever either operand is masked.

Time series of rasters are sparse and keyed by calendar month
(:class:`BucketKey`).  A month without data simply has no entry; there are no
all-masked placeholder composites.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import operator
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import xarray as xr

LOGGER = logging.getLogger(__name__)


class MisalignedReferenceError(ValueError):
    """Raised when rasters on different spatial references are combined."""


class InsufficientDataError(RuntimeError):
    """Raised when an input carries no samples at all."""


# ---------------------------------------------------------------------------
# Spatial reference
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpatialReference:
    """Coordinate system and regular grid geometry shared by a pipeline run.

    Parameters
    ----------
    shape:
        ``(rows, cols)`` of the grid.
    origin:
        ``(x0, y0)`` coordinates of the centre of the upper-left pixel.
    resolution:
        ``(dx, dy)`` pixel spacing.  ``dy`` is negative for north-up grids.
    crs:
        Coordinate reference system identifier.
    """

    shape: Tuple[int, int]
    origin: Tuple[float, float]
    resolution: Tuple[float, float]
    crs: str = "EPSG:4326"

    def __post_init__(self) -> None:
        rows, cols = (int(v) for v in self.shape)
        if rows < 1 or cols < 1:
            raise ValueError(f"Grid shape must be positive, got {self.shape}")
        if self.resolution[0] == 0 or self.resolution[1] == 0:
            raise ValueError("Grid resolution must be non-zero")
        object.__setattr__(self, "shape", (rows, cols))
        object.__setattr__(self, "origin", (float(self.origin[0]), float(self.origin[1])))
        object.__setattr__(self, "resolution", (float(self.resolution[0]), float(self.resolution[1])))

    def x_coords(self) -> np.ndarray:
        return self.origin[0] + self.resolution[0] * np.arange(self.shape[1])

    def y_coords(self) -> np.ndarray:
        return self.origin[1] + self.resolution[1] * np.arange(self.shape[0])

    def aligned_with(self, other: "SpatialReference", rtol: float = 1e-9) -> bool:
        """Return ``True`` when both references describe the same grid."""

        if self is other:
            return True
        return (
            self.crs == other.crs
            and self.shape == other.shape
            and np.allclose(self.origin, other.origin, rtol=rtol, atol=1e-12)
            and np.allclose(self.resolution, other.resolution, rtol=rtol, atol=1e-12)
        )

    @classmethod
    def from_coords(cls, y: Sequence[float], x: Sequence[float], crs: str = "EPSG:4326") -> "SpatialReference":
        """Build a reference from 1-D pixel-centre coordinates.

        Raises
        ------
        ValueError
            If either axis is not regularly spaced.
        """

        y = np.asarray(y, dtype=float)
        x = np.asarray(x, dtype=float)
        dy = _regular_spacing(y, "y")
        dx = _regular_spacing(x, "x")
        return cls(shape=(y.size, x.size), origin=(x[0], y[0]), resolution=(dx, dy), crs=crs)


def _regular_spacing(coords: np.ndarray, axis: str) -> float:
    if coords.ndim != 1 or coords.size == 0:
        raise ValueError(f"{axis} coordinates must be a non-empty 1-D array")
    if coords.size == 1:
        # single row/column grids carry no spacing information
        return 1.0
    steps = np.diff(coords)
    if not np.allclose(steps, steps[0], rtol=1e-6):
        raise ValueError(f"{axis} coordinates are not regularly spaced")
    return float(steps.mean())


def ensure_aligned(*references: SpatialReference) -> SpatialReference:
    """Return the common reference or raise :class:`MisalignedReferenceError`."""

    if not references:
        raise ValueError("At least one spatial reference is required")
    first = references[0]
    for ref in references[1:]:
        if not first.aligned_with(ref):
            raise MisalignedReferenceError(
                f"Spatial references differ: {first} vs {ref}. Resample inputs onto a common grid first."
            )
    return first


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------

def _read_only(values: np.ndarray, mask: np.ndarray) -> np.ma.MaskedArray:
    values = np.array(values, copy=True)
    mask = np.array(mask, dtype=bool, copy=True)
    values.setflags(write=False)
    mask.setflags(write=False)
    return np.ma.MaskedArray(values, mask=mask, copy=False)


@dataclass(frozen=True, eq=False)
class Raster:
    """Immutable masked 2-D field over a :class:`SpatialReference`."""

    values: np.ma.MaskedArray
    reference: SpatialReference

    def __post_init__(self) -> None:
        values = np.ma.asarray(self.values)
        if values.shape != self.reference.shape:
            raise ValueError(
                f"Raster shape {values.shape} does not match reference shape {self.reference.shape}"
            )
        object.__setattr__(self, "values", _read_only(values.data, np.ma.getmaskarray(values)))

    # -- construction ------------------------------------------------------
    @classmethod
    def from_array(
        cls,
        values: Any,
        reference: SpatialReference,
        valid: Optional[Any] = None,
        dtype: Any = float,
    ) -> "Raster":
        """Create a raster from plain array data.

        Non-finite values are masked.  ``valid`` optionally masks further
        pixels (``False`` = masked).
        """

        array = np.asarray(values, dtype=dtype)
        if array.shape != reference.shape:
            array = np.broadcast_to(array, reference.shape)
        mask = np.zeros(reference.shape, dtype=bool)
        if np.issubdtype(array.dtype, np.floating):
            mask |= ~np.isfinite(array)
        if valid is not None:
            mask |= ~np.broadcast_to(np.asarray(valid, dtype=bool), reference.shape)
        return cls(np.ma.MaskedArray(array, mask=mask), reference)

    @classmethod
    def full(cls, value: float, reference: SpatialReference, dtype: Any = float) -> "Raster":
        return cls.from_array(np.full(reference.shape, value, dtype=dtype), reference, dtype=dtype)

    @classmethod
    def masked(cls, reference: SpatialReference, dtype: Any = float) -> "Raster":
        """Return a raster with every pixel masked."""

        data = np.zeros(reference.shape, dtype=dtype)
        return cls(np.ma.MaskedArray(data, mask=np.ones(reference.shape, dtype=bool)), reference)

    @classmethod
    def from_xarray(cls, data: xr.DataArray, reference: Optional[SpatialReference] = None) -> "Raster":
        """Convert a 2-D :class:`xarray.DataArray` (``y``/``x`` or ``lat``/``lon``)."""

        if data.ndim != 2:
            raise ValueError(f"Expected a 2-D DataArray, got dims {data.dims}")
        if reference is None:
            y_name, x_name = data.dims
            reference = SpatialReference.from_coords(
                data[y_name].values, data[x_name].values, crs=str(data.attrs.get("crs", "EPSG:4326"))
            )
        return cls.from_array(data.values, reference, dtype=data.dtype if data.dtype == bool else float)

    # -- inspection --------------------------------------------------------
    @property
    def shape(self) -> Tuple[int, int]:
        return self.reference.shape

    @property
    def dtype(self) -> np.dtype:
        return self.values.dtype

    @property
    def valid(self) -> np.ndarray:
        return ~np.ma.getmaskarray(self.values)

    def count_valid(self) -> int:
        return int(self.valid.sum())

    def filled(self, fill_value: Any = np.nan) -> np.ndarray:
        values = self.values
        if isinstance(fill_value, float) and np.isnan(fill_value) and not np.issubdtype(self.dtype, np.floating):
            # NaN cannot be stored in bool/int rasters
            values = values.astype(float)
        return np.array(np.ma.filled(values, fill_value))

    def to_xarray(self, name: str, y_dim: str = "lat", x_dim: str = "lon") -> xr.DataArray:
        """Return a DataArray with masked pixels set to ``NaN``."""

        data = self.filled(np.nan)
        return xr.DataArray(
            data,
            dims=(y_dim, x_dim),
            coords={y_dim: self.reference.y_coords(), x_dim: self.reference.x_coords()},
            name=name,
            attrs={"crs": self.reference.crs},
        )

    # -- masking -----------------------------------------------------------
    def update_mask(self, mask: "Raster") -> "Raster":
        """Mask every pixel where ``mask`` is masked or false.

        Pixels already masked stay masked.
        """

        ensure_aligned(self.reference, mask.reference)
        keep = mask.valid & np.ma.filled(mask.values, False).astype(bool)
        return Raster(np.ma.MaskedArray(self.values.data, mask=~(self.valid & keep)), self.reference)

    def unmask(self, fill_value: Any = 0) -> "Raster":
        """Return a fully valid raster with masked pixels replaced."""

        return Raster(np.ma.MaskedArray(np.ma.filled(self.values, fill_value)), self.reference)

    # -- arithmetic ----------------------------------------------------------
    def _apply(self, other: Any, func: Callable[[Any, Any], Any]) -> "Raster":
        if isinstance(other, Raster):
            ensure_aligned(self.reference, other.reference)
            other = other.values
        result = func(self.values, other)
        return Raster(np.ma.asarray(result), self.reference)

    def __add__(self, other: Any) -> "Raster":
        return self._apply(other, np.ma.add)

    def __radd__(self, other: Any) -> "Raster":
        return self._apply(other, lambda a, b: np.ma.add(b, a))

    def __sub__(self, other: Any) -> "Raster":
        return self._apply(other, np.ma.subtract)

    def __rsub__(self, other: Any) -> "Raster":
        return self._apply(other, lambda a, b: np.ma.subtract(b, a))

    def __mul__(self, other: Any) -> "Raster":
        return self._apply(other, np.ma.multiply)

    def __rmul__(self, other: Any) -> "Raster":
        return self._apply(other, lambda a, b: np.ma.multiply(b, a))

    def __truediv__(self, other: Any) -> "Raster":
        return self._apply(other, np.ma.divide)

    def __abs__(self) -> "Raster":
        return Raster(np.ma.abs(self.values), self.reference)

    def __neg__(self) -> "Raster":
        return Raster(-self.values, self.reference)

    # -- comparisons (boolean rasters, masks propagate) -----------------------
    def lt(self, other: Any) -> "Raster":
        return self._apply(other, operator.lt)

    def le(self, other: Any) -> "Raster":
        return self._apply(other, operator.le)

    def gt(self, other: Any) -> "Raster":
        return self._apply(other, operator.gt)

    def ge(self, other: Any) -> "Raster":
        return self._apply(other, operator.ge)

    def astype(self, dtype: Any) -> "Raster":
        return Raster(self.values.astype(dtype), self.reference)


# ---------------------------------------------------------------------------
# Masks
# ---------------------------------------------------------------------------

def mask_and(first: Raster, second: Raster) -> Raster:
    """Pixel-wise AND of two boolean rasters; masked where either is masked."""

    return first._apply(second, lambda a, b: np.ma.logical_and(a, b))


def mask_or(first: Raster, second: Raster) -> Raster:
    """Pixel-wise OR of two boolean rasters; masked where either is masked."""

    return first._apply(second, lambda a, b: np.ma.logical_or(a, b))


def as_decision(mask: Raster) -> np.ndarray:
    """Return a plain boolean array: ``True`` only where valid and true."""

    return mask.valid & np.ma.filled(mask.values, False).astype(bool)


# ---------------------------------------------------------------------------
# Timestamped rasters and sparse monthly series
# ---------------------------------------------------------------------------

class BucketKey(NamedTuple):
    """Calendar-month identifier used to align composites across sources."""

    year: int
    month: int

    @classmethod
    def from_timestamp(cls, time: Any) -> "BucketKey":
        ts = pd.Timestamp(time)
        return cls(int(ts.year), int(ts.month))

    @property
    def start(self) -> pd.Timestamp:
        return pd.Timestamp(year=self.year, month=self.month, day=1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True, eq=False)
class TimestampedRaster:
    """A set of co-registered channels observed at one instant."""

    time: pd.Timestamp
    channels: Mapping[str, Raster] = field(default_factory=dict)

    def __post_init__(self) -> None:
        channels = dict(self.channels)
        if not channels:
            raise ValueError("A timestamped raster needs at least one channel")
        ensure_aligned(*(raster.reference for raster in channels.values()))
        object.__setattr__(self, "time", pd.Timestamp(self.time))
        object.__setattr__(self, "channels", channels)

    @property
    def bucket(self) -> BucketKey:
        return BucketKey.from_timestamp(self.time)

    @property
    def month(self) -> int:
        return int(self.time.month)

    @property
    def reference(self) -> SpatialReference:
        return next(iter(self.channels.values())).reference

    @property
    def channel_names(self) -> Tuple[str, ...]:
        return tuple(self.channels)

    def __getitem__(self, name: str) -> Raster:
        try:
            return self.channels[name]
        except KeyError:
            raise KeyError(f"Channel '{name}' not present at {self.time:%Y-%m-%d}; have {list(self.channels)}") from None

    def __contains__(self, name: object) -> bool:
        return name in self.channels

    def select(self, names: Iterable[str]) -> "TimestampedRaster":
        return TimestampedRaster(self.time, {name: self[name] for name in names})

    def with_channels(self, **rasters: Raster) -> "TimestampedRaster":
        channels = dict(self.channels)
        channels.update(rasters)
        return TimestampedRaster(self.time, channels)

    def view(self) -> Mapping[str, Raster]:
        return MappingProxyType(self.channels)


class RasterTimeSeries:
    """Chronologically ordered, immutable collection of timestamped rasters.

    Samples are stored in time order.  Lookups by :class:`BucketKey` are only
    defined for monthly series, i.e. series whose bucket keys are unique.
    """

    def __init__(self, samples: Iterable[TimestampedRaster] = ()) -> None:
        ordered = sorted(samples, key=lambda sample: sample.time)
        if ordered:
            ensure_aligned(*(sample.reference for sample in ordered))
        self._samples: Tuple[TimestampedRaster, ...] = tuple(ordered)
        self._index: Optional[Dict[BucketKey, TimestampedRaster]] = None

    # -- sequence protocol --------------------------------------------------
    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[TimestampedRaster]:
        return iter(self._samples)

    def __bool__(self) -> bool:
        return bool(self._samples)

    def __repr__(self) -> str:
        if not self._samples:
            return "RasterTimeSeries(empty)"
        return (
            f"RasterTimeSeries(n={len(self)}, {self._samples[0].time:%Y-%m-%d} .. "
            f"{self._samples[-1].time:%Y-%m-%d}, channels={list(self._samples[0].channel_names)})"
        )

    # -- bucket access --------------------------------------------------------
    def buckets(self) -> List[BucketKey]:
        return [sample.bucket for sample in self._samples]

    @property
    def is_monthly(self) -> bool:
        keys = self.buckets()
        return len(keys) == len(set(keys))

    def _bucket_index(self) -> Dict[BucketKey, TimestampedRaster]:
        if self._index is None:
            if not self.is_monthly:
                raise ValueError("Bucket lookup requires a monthly series (one composite per month)")
            self._index = {sample.bucket: sample for sample in self._samples}
        return self._index

    def __getitem__(self, key: BucketKey) -> TimestampedRaster:
        index = self._bucket_index()
        key = BucketKey(*key)
        if key not in index:
            raise KeyError(f"No composite for bucket {key}")
        return index[key]

    def __contains__(self, key: object) -> bool:
        try:
            return BucketKey(*key) in self._bucket_index()  # type: ignore[misc]
        except (TypeError, ValueError):
            return False

    def get(self, key: BucketKey, default: Optional[TimestampedRaster] = None) -> Optional[TimestampedRaster]:
        return self._bucket_index().get(BucketKey(*key), default)

    # -- derived views ----------------------------------------------------------
    @property
    def reference(self) -> SpatialReference:
        if not self._samples:
            raise InsufficientDataError("An empty series has no spatial reference")
        return self._samples[0].reference

    def first(self) -> TimestampedRaster:
        if not self._samples:
            raise InsufficientDataError("Series is empty")
        return self._samples[0]

    def last(self) -> TimestampedRaster:
        if not self._samples:
            raise InsufficientDataError("Series is empty")
        return self._samples[-1]

    def times(self) -> pd.DatetimeIndex:
        return pd.DatetimeIndex([sample.time for sample in self._samples])

    def filter_dates(self, start: Any, end: Any) -> "RasterTimeSeries":
        """Return samples with ``start <= time < end``."""

        start, end = pd.Timestamp(start), pd.Timestamp(end)
        return RasterTimeSeries(s for s in self._samples if start <= s.time < end)

    def filter_month(self, month: int) -> "RasterTimeSeries":
        return RasterTimeSeries(s for s in self._samples if s.month == month)

    def map(self, func: Callable[[TimestampedRaster], TimestampedRaster]) -> "RasterTimeSeries":
        return RasterTimeSeries(func(sample) for sample in self._samples)

    def select(self, names: Iterable[str]) -> "RasterTimeSeries":
        names = list(names)
        return RasterTimeSeries(sample.select(names) for sample in self._samples)

    def stack(self, channel: str) -> np.ma.MaskedArray:
        """Return ``channel`` as a ``(time, rows, cols)`` masked array."""

        if not self._samples:
            raise InsufficientDataError("Cannot stack an empty series")
        return np.ma.stack([sample[channel].values for sample in self._samples])


__all__ = [
    "BucketKey",
    "InsufficientDataError",
    "MisalignedReferenceError",
    "Raster",
    "RasterTimeSeries",
    "SpatialReference",
    "TimestampedRaster",
    "as_decision",
    "ensure_aligned",
    "mask_and",
    "mask_or",
]
