from shapely.geometry import Polygon, LineString
from shapely.geometry.base import BaseGeometry
from shapely.ops import substring
import networkx as nx
from typing import Any, Optional, Sequence


def polygon_from_points(points: Sequence[Sequence[float]]) -> Polygon:
    """
    Build a polygon from an ordered sequence of points.

    The ring is closed automatically. Fewer than three distinct points give
    an empty polygon instead of an error.

    Args:
        points: Ordered (x, y) pairs

    Returns:
        Shapely Polygon
    """
    coords = [(float(p[0]), float(p[1])) for p in points]
    if len(coords) > 1 and coords[0] == coords[-1]:
        coords = coords[:-1]

    if len(set(coords)) < 3:
        return Polygon()

    return Polygon(coords)


def ensure_valid_polygon(polygon: BaseGeometry) -> BaseGeometry:
    """
    Repair an invalid (e.g. self-intersecting) polygon.

    Uses the zero-width buffer trick. The result approximates the input and
    may be empty or a MultiPolygon.

    Args:
        polygon: Shapely polygonal geometry

    Returns:
        Valid polygonal geometry
    """
    if polygon.is_empty or polygon.is_valid:
        return polygon
    return polygon.buffer(0)


def edge_geometry(graph: nx.MultiDiGraph, u: Any, v: Any, key: Any) -> Optional[LineString]:
    """
    Get the geometry of a street graph edge.

    Falls back to a straight line between the node coordinates when the
    edge carries no geometry.

    Args:
        graph: Street network with x/y node attributes
        u, v, key: Edge identifier

    Returns:
        LineString, or None if the node coordinates are missing
    """
    data = graph[u][v][key]
    geom = data.get("geometry")
    if geom is not None:
        return geom

    u_data = graph.nodes.get(u, {})
    v_data = graph.nodes.get(v, {})
    if "x" not in u_data or "x" not in v_data:
        return None

    return LineString([
        (u_data["x"], u_data["y"]),
        (v_data["x"], v_data["y"]),
    ])


def split_at_midpoint(line: LineString) -> tuple[LineString, LineString]:
    """
    Split a line into the halves before and after its midpoint.

    Args:
        line: Shapely LineString

    Returns:
        Tuple of (start half, end half)
    """
    return (
        substring(line, 0.0, 0.5, normalized=True),
        substring(line, 0.5, 1.0, normalized=True),
    )
