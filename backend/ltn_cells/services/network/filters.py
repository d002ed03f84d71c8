"""
Detection of modal filters already present in OSM street data.

Some roads are modelled in OSM as short cycleways, but physically they are
regular streets with a modal filter (bollards, planters) in the middle. Cars
can't cross them, yet both ends belong to the driven network.
"""

import logging
from typing import Any

import networkx as nx

from ltn_cells.utils.geo import edge_geometry

logger = logging.getLogger(__name__)


# Highway types that carry no car traffic
CAR_FREE_HIGHWAYS = {
    "pedestrian",
    "footway",
    "cycleway",
    "path",
    "steps",
    "bridleway",
}

# Longer cycleways are probably not physically driveable
MAX_FILTERED_CYCLEWAY_M = 20.0

EdgeKey = tuple[Any, Any, Any]


def node_sort_key(node: Any) -> tuple[str, Any]:
    """Sort key grouping values by type name, so mixed int and str node IDs compare."""
    return (type(node).__name__, node)


def edge_sort_key(edge: EdgeKey) -> tuple:
    return tuple(node_sort_key(part) for part in edge)


def get_highway(data: dict) -> str:
    """Get the highway tag of an edge, taking the first one of a list."""
    highway = data.get("highway", "unclassified")
    if isinstance(highway, list):
        highway = highway[0] if highway else "unclassified"
    return highway


def is_car_free_highway(highway: str) -> bool:
    return highway in CAR_FREE_HIGHWAYS


def is_oneway(data: dict) -> bool:
    """Check the oneway attribute, which OSMnx stores as bool or raw tag."""
    oneway = data.get("oneway", False)
    if isinstance(oneway, list):
        oneway = oneway[0] if oneway else False
    if isinstance(oneway, str):
        return oneway.lower() in ("yes", "true", "1", "-1")
    return bool(oneway)


def detect_existing_filters(
    graph: nx.MultiDiGraph,
    max_length_m: float = MAX_FILTERED_CYCLEWAY_M,
) -> list[EdgeKey]:
    """
    Find cycleway edges that are really streets with a modal filter.

    An edge qualifies when:
    - it is tagged highway=cycleway (footways are left alone)
    - it is not one-way, which usually means part of a complicated junction
    - it is at most max_length_m long
    - both of its end nodes also touch a driveable road

    Args:
        graph: Street network (OSMnx-style MultiDiGraph)
        max_length_m: Longest cycleway still treated as a filtered street

    Returns:
        Sorted list of (u, v, key) edges
    """
    filtered = []

    for u, v, key, data in graph.edges(keys=True, data=True):
        if get_highway(data) != "cycleway":
            continue
        if is_oneway(data):
            continue

        length = data.get("length")
        if length is None:
            geom = edge_geometry(graph, u, v, key)
            length = geom.length if geom is not None else 0.0
        if length > max_length_m:
            continue

        if not (_touches_driveable(graph, u) and _touches_driveable(graph, v)):
            continue

        filtered.append((u, v, key))

    filtered.sort(key=edge_sort_key)
    logger.info("Detected %d existing modal filters", len(filtered))
    return filtered


def _touches_driveable(graph: nx.MultiDiGraph, node: Any) -> bool:
    """Check whether any road at a node carries car traffic."""
    if graph.is_directed():
        incident = list(graph.out_edges(node, data=True)) + list(graph.in_edges(node, data=True))
    else:
        incident = list(graph.edges(node, data=True))

    return any(
        not is_car_free_highway(get_highway(data))
        for _, _, data in incident
    )
