"""Baseline benchmark for tile-parallel Theil–Sen fitting.

Run the script directly to compare sequential and parallel execution of
:class:`aquifer_proxy.storage.trend.TrendEngine` on a synthetic grid.
"""

from __future__ import annotations

import argparse
import time

import numpy as np
import pandas as pd

from aquifer_proxy.data_processing.raster import Raster, RasterTimeSeries, SpatialReference, TimestampedRaster
from aquifer_proxy.storage.trend import TrendEngine
from aquifer_proxy.utils.parallel_processing import TileParallelExecutor


def _build_fake_series(rows: int, cols: int, months: int, seed: int = 42) -> RasterTimeSeries:
    rng = np.random.default_rng(seed)
    reference = SpatialReference(shape=(rows, cols), origin=(-70.0, 0.0), resolution=(0.25, -0.25))
    slope = rng.normal(-0.3, 0.2, size=(rows, cols))
    samples = []
    for k, time in enumerate(pd.date_range("2003-01-01", periods=months, freq="MS")):
        values = slope * k / 12.0 + rng.normal(0.0, 1.0, size=(rows, cols))
        samples.append(TimestampedRaster(time, {"value": Raster.from_array(values, reference)}))
    return RasterTimeSeries(samples)


def benchmark(rows: int, cols: int, months: int, processes: int, tile: int) -> None:
    series = _build_fake_series(rows, cols, months)
    engine = TrendEngine(TileParallelExecutor(n_processes=processes, verbose=False), tile_shape=(tile, tile))
    end = series.last().time + pd.Timedelta(days=1)

    start = time.perf_counter()
    engine.fit(series, "value", series.first().time, end, "full")
    duration = time.perf_counter() - start
    print(f"Fitted {rows}x{cols} pixels over {months} months with {processes} process(es) in {duration:.3f}s")


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark tile-parallel Theil-Sen fitting")
    parser.add_argument("--rows", type=int, default=64, help="Grid rows")
    parser.add_argument("--cols", type=int, default=64, help="Grid columns")
    parser.add_argument("--months", type=int, default=120, help="Number of monthly composites")
    parser.add_argument("--processes", type=int, default=1, help="Number of worker processes")
    parser.add_argument("--tile", type=int, default=32, help="Tile edge length in pixels")
    args = parser.parse_args()

    benchmark(rows=args.rows, cols=args.cols, months=args.months, processes=args.processes, tile=args.tile)


if __name__ == "__main__":  # pragma: no cover - manual benchmarking entrypoint
    main()
