"""
Greedy coloring of traffic cells.

Assigns each cell a palette color so that adjacent cells are distinguishable
on the map. Car-free cells always get the reserved car-free color.

The algorithm is first-fit graph coloring over the cell adjacency graph:
1. Car-free cells are set aside and get CAR_FREE_COLOR
2. The remaining cells are visited in ascending ID order
3. Each takes the lowest palette color unused by its colored neighbors
4. Only when every palette color is taken by a neighbor, colors are reused
   cyclically

This does not minimize the number of colors, but it is deterministic and
stable: a local change only recolors cells visited after it.
"""

import logging
from typing import Callable, Iterable, Optional, Sequence

import networkx as nx

logger = logging.getLogger(__name__)


# ColorBrewer Set3, minus the green that would read as car-free
COLORS = [
    "#8dd3c7",
    "#ffffb3",
    "#bebada",
    "#fb8072",
    "#80b1d3",
    "#fdb462",
    "#fccde5",
    "#bc80bd",
]

CAR_FREE_COLOR = "#0c9e3f"


def color_cells(
    cell_ids: Iterable[int],
    adjacency: set[tuple[int, int]],
    is_car_free: Optional[Callable[[int], bool]] = None,
    palette: Sequence[str] = COLORS,
    car_free_color: str = CAR_FREE_COLOR,
) -> dict[int, str]:
    """
    Color cells so that adjacent cells get different colors.

    Args:
        cell_ids: Every cell ID to color (IDs only present in adjacency are
            colored too)
        adjacency: Symmetric set of adjacent (cell_id, cell_id) pairs
        is_car_free: Predicate flagging car-free cells; None means no cell is
            car-free
        palette: Ordered colors for regular cells
        car_free_color: Reserved color for car-free cells

    Returns:
        Mapping from every cell ID to exactly one color

    Raises:
        ValueError: If the palette is empty, has duplicates, or contains the
            car-free color
    """
    validate_palette(palette, car_free_color)

    all_ids = set(cell_ids)
    for a, b in adjacency:
        all_ids.add(a)
        all_ids.add(b)

    car_free = {
        cell_id for cell_id in all_ids
        if is_car_free is not None and is_car_free(cell_id)
    }

    # Car-free colors never clash with palette colors, so car-free cells
    # don't constrain their neighbors
    G = nx.Graph()
    G.add_nodes_from(cell_id for cell_id in all_ids if cell_id not in car_free)
    G.add_edges_from(
        (a, b) for a, b in adjacency
        if a != b and a not in car_free and b not in car_free
    )

    indices: dict[int, int] = {}
    wrapped = 0
    for cell_id in sorted(G):
        used = {indices[other] for other in G[cell_id] if other in indices}
        free = next((i for i in range(len(palette)) if i not in used), None)
        if free is None:
            # Every palette color touches this cell already
            free = wrapped % len(palette)
            wrapped += 1
        indices[cell_id] = free

    colors: dict[int, str] = {}
    for cell_id in sorted(all_ids):
        if cell_id in car_free:
            colors[cell_id] = car_free_color
        else:
            colors[cell_id] = palette[indices[cell_id]]

    if wrapped:
        logger.debug(
            "Palette of %d colors exhausted, %d cells reuse colors cyclically",
            len(palette), wrapped,
        )

    logger.debug(
        "Colored %d cells (%d car-free, %d palette colors used)",
        len(colors), len(car_free), len(set(indices.values())),
    )

    return colors


def validate_palette(palette: Sequence[str], car_free_color: str) -> None:
    """
    Reject palettes that would break the coloring guarantees.

    Raises:
        ValueError: If the palette is empty, has duplicates, or contains the
            car-free color
    """
    if not palette:
        raise ValueError("palette must contain at least one color")

    normalized = [color.lower() for color in palette]
    if len(set(normalized)) != len(normalized):
        raise ValueError("palette must not contain duplicate colors")

    if car_free_color.lower() in normalized:
        raise ValueError(
            f"car-free color {car_free_color} must not be part of the palette"
        )
