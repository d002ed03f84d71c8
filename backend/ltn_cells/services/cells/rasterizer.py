"""
Grid Rasterizer for traffic cells.

Discretizes a neighbourhood boundary polygon into a regular grid and asks a
cell-assignment oracle which cell each grid position belongs to.

The algorithm:
1. Derive the grid shape from the polygon's bounding box and the cell size
2. Test every position center against the polygon (vectorized)
3. Query the oracle once for each position inside the polygon
4. Store the cell IDs in a row-major numpy array
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, Union

import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry

from ltn_cells.utils.geo import ensure_valid_polygon, polygon_from_points

logger = logging.getLogger(__name__)


# Sentinel for positions outside the boundary or outside every cell
BOUNDARY_MARKER = -1

Position = tuple[float, float]


class CellOracle(Protocol):
    """Maps a planar position to the cell occupying it."""

    def query(self, position: Position) -> Optional[int]:
        """Return a cell ID, BOUNDARY_MARKER or None for "no cell"."""
        ...


class FunctionOracle:
    """Adapts a plain callable to the CellOracle interface."""

    def __init__(self, func: Callable[[Position], Optional[int]]):
        self.func = func

    def query(self, position: Position) -> Optional[int]:
        return self.func(position)


@dataclass
class CellGrid:
    """
    Rasterized cell assignment of a boundary polygon.

    ``ids[row, col]`` covers the square whose lower-left corner is
    ``(origin_x + col * cell_size, origin_y + row * cell_size)``. Row 0 is the
    row of minimum y.
    """
    ids: np.ndarray
    origin_x: float
    origin_y: float
    cell_size: float

    @property
    def rows(self) -> int:
        return self.ids.shape[0]

    @property
    def cols(self) -> int:
        return self.ids.shape[1]

    def center(self, row: int, col: int) -> Position:
        """Planar coordinates of a grid position's center."""
        return (
            self.origin_x + (col + 0.5) * self.cell_size,
            self.origin_y + (row + 0.5) * self.cell_size,
        )

    def cell_ids(self) -> list[int]:
        """Sorted list of every cell ID present in the grid."""
        return [int(v) for v in np.unique(self.ids) if v != BOUNDARY_MARKER]

    def is_empty(self) -> bool:
        return bool(np.all(self.ids == BOUNDARY_MARKER))


def rasterize(
    polygon: Union[BaseGeometry, Sequence[Position]],
    cell_size: float,
    oracle: CellOracle,
    workers: int = 1,
) -> CellGrid:
    """
    Rasterize a boundary polygon into a grid of cell IDs.

    Args:
        polygon: Boundary polygon, or its ordered exterior points
        cell_size: Side length of a grid position, in polygon units
        oracle: Cell-assignment oracle, queried at most once per position
        workers: Number of threads used to query the oracle

    Returns:
        CellGrid covering the polygon's bounding box

    Raises:
        ValueError: If cell_size is not positive or the oracle returns an
            invalid cell ID
    """
    if not isinstance(cell_size, (int, float)) or not math.isfinite(cell_size) or cell_size <= 0:
        raise ValueError(f"cell_size must be a positive number, got {cell_size!r}")

    if not isinstance(polygon, BaseGeometry):
        polygon = polygon_from_points(polygon)

    polygon = ensure_valid_polygon(polygon)

    if polygon.is_empty or polygon.area <= 0:
        logger.warning("Boundary polygon has zero area, returning empty grid")
        return _degenerate_grid(polygon, cell_size)

    minx, miny, maxx, maxy = polygon.bounds
    width = maxx - minx
    height = maxy - miny

    if cell_size > width and cell_size > height:
        logger.warning(
            "Cell size %.3f exceeds boundary extent (%.3f x %.3f), returning empty grid",
            cell_size, width, height,
        )
        return _degenerate_grid(polygon, cell_size)

    cols = max(1, math.ceil(width / cell_size))
    rows = max(1, math.ceil(height / cell_size))

    xs = minx + (np.arange(cols) + 0.5) * cell_size
    ys = miny + (np.arange(rows) + 0.5) * cell_size
    grid_x, grid_y = np.meshgrid(xs, ys)

    shapely.prepare(polygon)
    inside = shapely.contains_xy(polygon, grid_x, grid_y)

    ids = np.full((rows, cols), BOUNDARY_MARKER, dtype=np.int64)

    def fill_row(row: int) -> None:
        for col in np.flatnonzero(inside[row]):
            result = oracle.query((float(grid_x[row, col]), float(grid_y[row, col])))
            ids[row, col] = _normalize_cell_id(result)

    if workers > 1 and rows > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # list() re-raises the first oracle failure
            list(executor.map(fill_row, range(rows)))
    else:
        for row in range(rows):
            fill_row(row)

    logger.debug(
        "Rasterized %dx%d grid (%d positions inside boundary)",
        rows, cols, int(inside.sum()),
    )

    return CellGrid(ids=ids, origin_x=minx, origin_y=miny, cell_size=float(cell_size))


def _normalize_cell_id(result: Optional[int]) -> int:
    """Convert an oracle answer to a grid value."""
    if result is None:
        return BOUNDARY_MARKER
    if isinstance(result, bool) or not isinstance(result, (int, np.integer)):
        raise ValueError(f"Oracle returned a non-integer cell ID: {result!r}")
    value = int(result)
    if value < 0 and value != BOUNDARY_MARKER:
        raise ValueError(f"Oracle returned a negative cell ID: {value}")
    return value


def _degenerate_grid(polygon: BaseGeometry, cell_size: float) -> CellGrid:
    """Minimal 1x1 grid holding only the boundary marker."""
    if polygon.is_empty:
        origin_x, origin_y = 0.0, 0.0
    else:
        origin_x, origin_y = polygon.bounds[0], polygon.bounds[1]

    return CellGrid(
        ids=np.full((1, 1), BOUNDARY_MARKER, dtype=np.int64),
        origin_x=origin_x,
        origin_y=origin_y,
        cell_size=float(cell_size),
    )
