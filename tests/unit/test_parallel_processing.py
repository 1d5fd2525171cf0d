"""Regression tests for :mod:`aquifer_proxy.utils.parallel_processing`."""

from __future__ import annotations

from typing import Dict

import pytest

np = pytest.importorskip("numpy")

from aquifer_proxy.utils.parallel_processing import (
    Tile,
    TileParallelExecutor,
    TileProcessingError,
    split_tiles,
)


def _tile_sum(tile: Tile, *, data) -> Dict[str, float]:
    return {"rows": tile.shape[0], "sum": float(np.sum(data))}


def _failing(tile: Tile, *, data):
    if tile.row_start == 2:
        raise ValueError("boom")
    return float(np.sum(data))


def test_split_tiles_covers_grid_without_overlap() -> None:
    tiles = split_tiles((5, 7), (2, 3))
    covered = np.zeros((5, 7), dtype=int)
    for tile in tiles:
        covered[tile.index] += 1
    assert (covered == 1).all()
    assert len(tiles) == 9
    assert tiles[-1].shape == (1, 1)


def test_split_tiles_rejects_empty_tiles() -> None:
    with pytest.raises(ValueError):
        split_tiles((4, 4), (0, 2))


def test_map_tiles_preserves_task_order() -> None:
    grid = np.arange(20, dtype=float).reshape(4, 5)
    tiles = split_tiles(grid.shape, (1, 5))
    executor = TileParallelExecutor(n_processes=1, verbose=False)

    results = executor.map_tiles(_tile_sum, [(tile, {"data": grid[tile.index]}) for tile in tiles])

    assert [result["sum"] for result in results] == [float(row.sum()) for row in grid]
    assert executor.last_errors == []


def test_map_tiles_records_errors_and_raises() -> None:
    grid = np.ones((4, 2))
    tiles = split_tiles(grid.shape, (1, 2))
    executor = TileParallelExecutor(n_processes=1, verbose=False)

    with pytest.raises(TileProcessingError):
        executor.map_tiles(_failing, [(tile, {"data": grid[tile.index]}) for tile in tiles])

    assert executor.last_errors == ["tile [2:3, 0:2]: ValueError: boom"]


def test_map_tiles_without_tasks() -> None:
    assert TileParallelExecutor(n_processes=1).map_tiles(_tile_sum, []) == []


def test_multiprocess_results_match_sequential() -> None:
    grid = np.arange(64, dtype=float).reshape(8, 8)
    tasks = [(tile, {"data": grid[tile.index]}) for tile in split_tiles(grid.shape, (4, 4))]

    sequential = TileParallelExecutor(n_processes=1).map_tiles(_tile_sum, tasks)
    parallel = TileParallelExecutor(n_processes=2, chunk_size=1).map_tiles(_tile_sum, tasks)

    assert parallel == sequential


@pytest.mark.parametrize("kwargs", [{"n_processes": 0}, {"n_processes": 1, "chunk_size": 0}])
def test_invalid_executor_arguments(kwargs) -> None:
    with pytest.raises(ValueError):
        TileParallelExecutor(**kwargs)
