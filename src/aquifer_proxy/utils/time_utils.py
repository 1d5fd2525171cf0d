"""Calendar helpers for month-stepped windows and elapsed time."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, List, Tuple

import numpy as np
import pandas as pd

DAYS_PER_YEAR = 365.25


def add_months(time: Any, months: int) -> pd.Timestamp:
    """Advance ``time`` by a whole number of calendar months."""

    return pd.Timestamp(time) + pd.DateOffset(months=int(months))


def iter_month_windows(start: Any, end: Any) -> Iterator[Tuple[pd.Timestamp, pd.Timestamp]]:
    """Yield ``[start + k months, start + (k + 1) months)`` windows.

    Only windows that begin strictly before ``end`` are produced.  Each window
    is anchored on ``start`` rather than on the previous window so day-of-month
    clipping (e.g. 31 January + 1 month) never accumulates.
    """

    start, end = pd.Timestamp(start), pd.Timestamp(end)
    k = 0
    while True:
        window_start = add_months(start, k)
        if window_start >= end:
            return
        yield window_start, add_months(start, k + 1)
        k += 1


def month_windows(start: Any, end: Any) -> List[Tuple[pd.Timestamp, pd.Timestamp]]:
    return list(iter_month_windows(start, end))


def count_months(start: Any, end: Any) -> int:
    """Number of month steps in the half-open interval ``[start, end)``."""

    return sum(1 for _ in iter_month_windows(start, end))


def elapsed_years(times: Iterable[Any], origin: Any) -> np.ndarray:
    """Fractional years elapsed since ``origin`` (Julian years of 365.25 days)."""

    index = pd.DatetimeIndex(list(times))
    delta = index - pd.Timestamp(origin)
    return np.asarray(delta / pd.Timedelta(days=DAYS_PER_YEAR), dtype=float)


__all__ = [
    "DAYS_PER_YEAR",
    "add_months",
    "count_months",
    "elapsed_years",
    "iter_month_windows",
    "month_windows",
]
