"""Tile-parallel execution for per-pixel raster computations.

Per-pixel estimators (the Theil–Sen trend in particular) are independent
across pixels, so a grid is split into rectangular tiles and each tile's
pixel stack is handed to a worker.  Workers receive only their own slice of
the data and return plain arrays; there is no shared mutable state.

Execution falls back to a simple loop when a single process is requested or
when there is only one tile, which keeps small grids and unit tests cheap.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from tqdm import tqdm

LOGGER = logging.getLogger(__name__)


class TileProcessingError(RuntimeError):
    """Raised when one or more tiles fail during execution."""


@dataclass(frozen=True)
class Tile:
    """Rectangular block of a grid, expressed as half-open index ranges."""

    row_start: int
    row_stop: int
    col_start: int
    col_stop: int

    @property
    def index(self) -> Tuple[slice, slice]:
        return slice(self.row_start, self.row_stop), slice(self.col_start, self.col_stop)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.row_stop - self.row_start, self.col_stop - self.col_start

    def __str__(self) -> str:
        return f"[{self.row_start}:{self.row_stop}, {self.col_start}:{self.col_stop}]"


def split_tiles(shape: Tuple[int, int], tile_shape: Tuple[int, int]) -> List[Tile]:
    """Cover ``shape`` with tiles of at most ``tile_shape`` pixels, row-major."""

    rows, cols = shape
    tile_rows, tile_cols = tile_shape
    if tile_rows < 1 or tile_cols < 1:
        raise ValueError("tile_shape entries must be at least 1")

    tiles: List[Tile] = []
    for r0 in range(0, rows, tile_rows):
        for c0 in range(0, cols, tile_cols):
            tiles.append(Tile(r0, min(r0 + tile_rows, rows), c0, min(c0 + tile_cols, cols)))
    return tiles


TileFunction = Callable[..., Any]


@dataclass(frozen=True)
class _TileTask:
    """Container for task execution parameters passed to worker processes."""

    tile: Tile
    function: TileFunction
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class _TileOutcome:
    """Result produced by a worker."""

    tile: Tile
    result: Any = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _execute_tile(task: _TileTask) -> _TileOutcome:
    """Worker entry-point."""

    try:
        result = task.function(task.tile, **task.payload)
        return _TileOutcome(tile=task.tile, result=result)
    except Exception as exc:
        return _TileOutcome(tile=task.tile, error=f"{type(exc).__name__}: {exc}")


class TileParallelExecutor:
    """Map a tile function over a grid using a process pool.

    Parameters
    ----------
    n_processes:
        Number of worker processes.  When ``None`` the executor defaults to
        ``cpu_count() - 1`` while ensuring at least one process.
    chunk_size:
        Number of tiles batched per chunk submitted to the pool.
    verbose:
        When ``True`` a progress bar is displayed while tiles complete.
    """

    def __init__(self, n_processes: Optional[int] = None, chunk_size: int = 4, verbose: bool = False) -> None:
        if n_processes is None:
            n_processes = max(1, mp.cpu_count() - 1)

        if n_processes < 1:
            raise ValueError("n_processes must be at least 1")

        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")

        self.n_processes = n_processes
        self.chunk_size = chunk_size
        self.verbose = verbose
        self._errors: List[_TileOutcome] = []

    @property
    def last_errors(self) -> List[str]:
        """Return error messages recorded during the most recent execution."""

        return [f"tile {outcome.tile}: {outcome.error}" for outcome in self._errors]

    def map_tiles(
        self,
        function: TileFunction,
        tasks: Sequence[Tuple[Tile, Mapping[str, Any]]],
        description: str = "Processing tiles",
    ) -> List[Any]:
        """Apply ``function(tile, **payload)`` to every task.

        Results are returned in task order.

        Raises
        ------
        TileProcessingError
            If any tile fails; the per-tile messages are available through
            :attr:`last_errors`.
        """

        self._errors = []
        if not tasks:
            LOGGER.info("No tiles supplied for processing.")
            return []

        prepared = [_TileTask(tile=tile, function=function, payload=dict(payload)) for tile, payload in tasks]
        outcomes = self._execute(prepared, description)

        self._errors = [outcome for outcome in outcomes if not outcome.succeeded]
        if self._errors:
            LOGGER.warning("%d of %d tiles failed: %s", len(self._errors), len(outcomes), "; ".join(self.last_errors))
            raise TileProcessingError(
                f"{len(self._errors)} tile(s) failed. Inspect `last_errors` for details."
            )

        return [outcome.result for outcome in outcomes]

    def _execute(self, tasks: Sequence[_TileTask], description: str) -> List[_TileOutcome]:
        if self.n_processes == 1 or len(tasks) <= 1:
            LOGGER.debug("Executing %d tiles sequentially.", len(tasks))
            iterable: Iterable[_TileOutcome] = map(_execute_tile, tasks)
            if self.verbose:
                iterable = tqdm(iterable, total=len(tasks), desc=description)
            return list(iterable)

        LOGGER.debug("Executing %d tiles across %d processes.", len(tasks), self.n_processes)
        context = mp.get_context("spawn") if mp.get_start_method(allow_none=True) != "spawn" else mp.get_context()
        with context.Pool(processes=self.n_processes) as pool:
            iterable = pool.imap(_execute_tile, tasks, chunksize=self.chunk_size)
            if self.verbose:
                iterable = tqdm(iterable, total=len(tasks), desc=description)
            return list(iterable)


__all__ = [
    "Tile",
    "TileParallelExecutor",
    "TileProcessingError",
    "split_tiles",
]
