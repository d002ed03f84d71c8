"""
Cell rendering pipeline.

Partitions a neighbourhood's boundary polygon based on its traffic cells and
colors the result. Space is discretized into a grid, so the results don't
look perfect, but it's fast.

Stages:
1. Rasterize the boundary into a grid of cell IDs
2. Extract the adjacency between cells (diffusion)
3. Color the cells so adjacent cells differ
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Union

from shapely.geometry.base import BaseGeometry

from ltn_cells.services.cells.coloring import (
    CAR_FREE_COLOR,
    COLORS,
    color_cells,
    validate_palette,
)
from ltn_cells.services.cells.diffusion import NEIGHBOR_OFFSETS, diffusion
from ltn_cells.services.cells.rasterizer import (
    BOUNDARY_MARKER,
    CellGrid,
    CellOracle,
    Position,
    rasterize,
)

logger = logging.getLogger(__name__)


@dataclass
class CellRendering:
    """Output of the pipeline, handed to an external renderer."""
    grid: CellGrid
    colors: dict[int, str]
    adjacency: set[tuple[int, int]] = field(default_factory=set)

    def color_grid(self, background: Optional[str] = None) -> list[list[Optional[str]]]:
        """
        Paint every grid position with its cell's color.

        Args:
            background: Color for positions holding the boundary marker

        Returns:
            Nested lists of colors, row-major, row 0 at minimum y
        """
        return [
            [
                background if value == BOUNDARY_MARKER else self.colors[int(value)]
                for value in row
            ]
            for row in self.grid.ids
        ]


class CellRenderer:
    """
    Runs rasterization, diffusion and coloring in order.

    The renderer holds only configuration; every call to render() recomputes
    everything from its inputs.
    """

    def __init__(
        self,
        palette: Optional[Sequence[str]] = None,
        car_free_color: str = CAR_FREE_COLOR,
        connectivity: int = 8,
        workers: int = 1,
    ):
        """
        Initialize the renderer.

        Args:
            palette: Ordered colors for regular cells (defaults to COLORS)
            car_free_color: Reserved color for car-free cells
            connectivity: Neighbor pattern for adjacency, 4 or 8
            workers: Threads used to query the oracle during rasterization

        Raises:
            ValueError: If connectivity is not 4 or 8, or the palette is
                empty, has duplicates, or contains the car-free color
        """
        if connectivity not in NEIGHBOR_OFFSETS:
            raise ValueError(f"connectivity must be 4 or 8, got {connectivity}")

        self.palette = list(COLORS) if palette is None else list(palette)
        validate_palette(self.palette, car_free_color)

        self.car_free_color = car_free_color
        self.connectivity = connectivity
        self.workers = workers

    def render(
        self,
        polygon: Union[BaseGeometry, Sequence[Position]],
        cell_size: float,
        oracle: CellOracle,
        is_car_free: Optional[Callable[[int], bool]] = None,
    ) -> CellRendering:
        """
        Compute the colored cell grid for a boundary polygon.

        Args:
            polygon: Neighbourhood boundary
            cell_size: Grid resolution in polygon units
            oracle: Cell-assignment oracle
            is_car_free: Predicate flagging car-free cells

        Returns:
            CellRendering with the grid, the color map and the adjacency
        """
        start_time = time.time()

        grid = rasterize(polygon, cell_size, oracle, workers=self.workers)
        cell_ids = grid.cell_ids()
        rasterized_at = time.time()
        logger.info(
            "Rasterized boundary into %dx%d grid with %d cells in %.3fs",
            grid.rows, grid.cols, len(cell_ids), rasterized_at - start_time,
        )

        adjacency = diffusion(grid, connectivity=self.connectivity)
        diffused_at = time.time()
        logger.info(
            "Found %d adjacent cell pairs in %.3fs",
            len(adjacency) // 2, diffused_at - rasterized_at,
        )

        colors = color_cells(
            cell_ids,
            adjacency,
            is_car_free=is_car_free,
            palette=self.palette,
            car_free_color=self.car_free_color,
        )
        logger.info(
            "Colored %d cells in %.3fs (total %.3fs)",
            len(colors), time.time() - diffused_at, time.time() - start_time,
        )

        return CellRendering(grid=grid, colors=colors, adjacency=adjacency)


def render_cells(
    polygon: Union[BaseGeometry, Sequence[Position]],
    cell_size: float,
    oracle: CellOracle,
    is_car_free: Optional[Callable[[int], bool]] = None,
    palette: Optional[Sequence[str]] = None,
    car_free_color: str = CAR_FREE_COLOR,
    connectivity: int = 8,
    workers: int = 1,
) -> CellRendering:
    """
    Convenience function to render cells with a one-off renderer.

    Args:
        polygon: Neighbourhood boundary
        cell_size: Grid resolution in polygon units
        oracle: Cell-assignment oracle
        is_car_free: Predicate flagging car-free cells
        palette: Ordered colors for regular cells
        car_free_color: Reserved color for car-free cells
        connectivity: Neighbor pattern for adjacency, 4 or 8
        workers: Threads used during rasterization

    Returns:
        CellRendering
    """
    renderer = CellRenderer(
        palette=palette,
        car_free_color=car_free_color,
        connectivity=connectivity,
        workers=workers,
    )
    return renderer.render(polygon, cell_size, oracle, is_car_free)
