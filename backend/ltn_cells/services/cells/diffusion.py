"""
Adjacency extraction ("diffusion") between traffic cells.

Scans a rasterized cell grid and turns spatial contact between grid positions
into a graph-level relation between cell IDs. The boundary marker is
transparent: it never becomes part of a pair and never links the cells on
either side of it.
"""

import logging
from typing import Union

import numpy as np

from ltn_cells.services.cells.rasterizer import BOUNDARY_MARKER, CellGrid

logger = logging.getLogger(__name__)


# Half of each neighbor pattern; the other half is the same pairs reversed
NEIGHBOR_OFFSETS = {
    4: [(0, 1), (1, 0)],
    8: [(0, 1), (1, 0), (1, 1), (1, -1)],
}


def diffusion(grid: Union[CellGrid, np.ndarray], connectivity: int = 8) -> set[tuple[int, int]]:
    """
    Find every pair of cells that touch in the grid.

    Returns a set of adjacent cell IDs. The pairs are symmetric: (x, y) and
    (y, x) are both populated. Adjacency with the boundary marker doesn't
    count, and a cell is never adjacent to itself.

    Args:
        grid: CellGrid or a 2-D array of cell IDs
        connectivity: 4 (edges only) or 8 (edges and diagonals)

    Returns:
        Set of (cell_id, cell_id) pairs

    Raises:
        ValueError: If connectivity is not 4 or 8
    """
    if connectivity not in NEIGHBOR_OFFSETS:
        raise ValueError(f"connectivity must be 4 or 8, got {connectivity}")

    ids = grid.ids if isinstance(grid, CellGrid) else np.asarray(grid)
    if ids.ndim != 2:
        raise ValueError(f"grid must be 2-dimensional, got shape {ids.shape}")

    found = [
        _touching_pairs(ids, dr, dc)
        for dr, dc in NEIGHBOR_OFFSETS[connectivity]
    ]
    pairs = np.concatenate(found)
    if len(pairs) == 0:
        return set()

    pairs = np.concatenate([pairs, pairs[:, ::-1]])
    pairs = np.unique(pairs, axis=0)

    adjacency = {(int(a), int(b)) for a, b in pairs}
    logger.debug("Found %d adjacent cell pairs", len(adjacency) // 2)
    return adjacency


def _touching_pairs(ids: np.ndarray, dr: int, dc: int) -> np.ndarray:
    """
    Pairs of distinct, non-marker IDs at positions (r, c) and (r + dr, c + dc).
    """
    rows, cols = ids.shape
    if dr >= rows or abs(dc) >= cols:
        return np.empty((0, 2), dtype=np.int64)

    here = ids[0:rows - dr, max(0, -dc):cols - max(0, dc)]
    there = ids[dr:rows, max(0, dc):cols - max(0, -dc)]

    mask = (here != BOUNDARY_MARKER) & (there != BOUNDARY_MARKER) & (here != there)
    return np.stack([here[mask], there[mask]], axis=1).astype(np.int64)

