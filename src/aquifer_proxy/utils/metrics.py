"""Fit diagnostics used as confidence proxies for per-pixel trends."""

from __future__ import annotations

from typing import Tuple

import numpy as np


def _remove_nan_pairs(obs: np.ndarray, sim: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    mask = ~(np.isnan(obs) | np.isnan(sim))
    return obs[mask], sim[mask]


def sum_of_squares(obs: np.ndarray, sim: np.ndarray) -> Tuple[float, float]:
    """Return ``(SSE, SST)`` for observations and fitted values."""

    obs = np.asarray(obs, dtype=float)
    sim = np.asarray(sim, dtype=float)
    obs, sim = _remove_nan_pairs(obs, sim)
    if obs.size == 0:
        return float("nan"), float("nan")
    sse = float(np.sum((obs - sim) ** 2))
    sst = float(np.sum((obs - np.mean(obs)) ** 2))
    return sse, sst


def zero_variance_tolerance(obs: np.ndarray) -> float:
    """Largest total sum of squares still attributable to round-off in ``obs``."""

    obs = np.asarray(obs, dtype=float)
    obs = obs[~np.isnan(obs)]
    return float(np.finfo(float).eps * max(1.0, float(np.sum(obs**2))) * obs.size)


def goodness_of_fit(obs: np.ndarray, sim: np.ndarray) -> float:
    """Return the R²-like proxy ``1 - SSE/SST``.

    Unlike a textbook coefficient of determination, a zero total sum of
    squares is replaced by ``1`` in the denominator, so a perfectly flat
    series fitted exactly scores ``1`` instead of being undefined.  A total
    sum of squares within :func:`zero_variance_tolerance` counts as zero,
    so a series that is flat up to floating-point round-off also scores ``1``.
    """

    obs = np.asarray(obs, dtype=float)
    sim = np.asarray(sim, dtype=float)
    obs, sim = _remove_nan_pairs(obs, sim)
    sse, sst = sum_of_squares(obs, sim)
    if np.isnan(sse):
        return float("nan")
    if sst <= zero_variance_tolerance(obs):
        sst = 1.0
    return 1.0 - sse / sst


__all__ = ["goodness_of_fit", "sum_of_squares", "zero_variance_tolerance"]
