"""Utility helpers for the storage-trend workflow."""

from .metrics import goodness_of_fit, sum_of_squares
from .parallel_processing import Tile, TileParallelExecutor, TileProcessingError, split_tiles
from .time_utils import add_months, count_months, elapsed_years, iter_month_windows, month_windows

__all__ = [
    "Tile",
    "TileParallelExecutor",
    "TileProcessingError",
    "add_months",
    "count_months",
    "elapsed_years",
    "goodness_of_fit",
    "iter_month_windows",
    "month_windows",
    "split_tiles",
    "sum_of_squares",
]
