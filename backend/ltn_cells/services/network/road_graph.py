"""
Cell-assignment oracle backed by a street network graph.

Computes traffic cells from an OSMnx-style street graph and answers grid
position queries by snapping to the nearest road.

The algorithm:
1. Drop boundary roads (perimeter arterials); they belong to no cell
2. Connect car roads through shared nodes, except across modal filters
3. Split each filtered road at its midpoint; each half joins its own end
4. Connect car-free roads separately; their components are car-free cells
5. Number the components deterministically and index every road segment
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import networkx as nx
import numpy as np
from shapely.geometry import LineString, Point
from shapely.strtree import STRtree

from ltn_cells.services.cells.rasterizer import BOUNDARY_MARKER, Position
from ltn_cells.services.network.filters import (
    EdgeKey,
    detect_existing_filters,
    edge_sort_key,
    node_sort_key,
    get_highway,
    is_car_free_highway,
)
from ltn_cells.utils.geo import edge_geometry, split_at_midpoint

logger = logging.getLogger(__name__)


@dataclass
class RoadSegment:
    """A piece of road attributed to the component of one node."""
    edge: EdgeKey
    geometry: LineString
    node: Any
    car_free: bool


class RoadNetworkOracle:
    """
    Assigns grid positions to the traffic cell of the nearest road.

    Cells are maximal sets of roads that stay mutually reachable by car once
    modal filters are in place. Roads without car traffic form car-free cells.
    """

    def __init__(
        self,
        graph: nx.MultiDiGraph,
        boundary_edges: Iterable[EdgeKey] = (),
        modal_filters: Iterable[EdgeKey] = (),
        max_distance: Optional[float] = None,
        include_existing_filters: bool = False,
    ):
        """
        Initialize the oracle and compute the cells.

        Args:
            graph: Street network with x/y node attributes and optional
                geometry/highway edge attributes
            boundary_edges: (u, v, key) edges forming the neighbourhood boundary
            modal_filters: (u, v, key) edges with a modal filter on them
            max_distance: Positions farther than this from every road get the
                boundary marker (None means no limit)
            include_existing_filters: Also treat short cycleways joining car
                roads as filtered streets
        """
        self.graph = graph
        self.max_distance = max_distance

        self.boundary_edges = self._with_reverse(boundary_edges)
        self.modal_filters = self._with_reverse(modal_filters)
        if include_existing_filters:
            self.modal_filters |= self._with_reverse(detect_existing_filters(graph))

        self._cell_edges: dict[int, list[EdgeKey]] = {}
        self._car_free_cells: set[int] = set()
        self._geometries: list[LineString] = []
        self._segment_cells: list[int] = []
        self._tree: Optional[STRtree] = None

        self._build_cells()

    @staticmethod
    def _with_reverse(edges: Iterable[EdgeKey]) -> set[EdgeKey]:
        """OSMnx stores two-way streets twice; a tag on one direction covers both."""
        result = set()
        for u, v, key in edges:
            result.add((u, v, key))
            result.add((v, u, key))
        return result

    def _build_cells(self):
        """Compute connected components and index all road segments."""
        car_graph = nx.Graph()
        car_free_graph = nx.Graph()
        segments: list[RoadSegment] = []
        boundary_geometries: list[LineString] = []

        for u, v, key, data in self.graph.edges(keys=True, data=True):
            edge = (u, v, key)
            geom = edge_geometry(self.graph, u, v, key)
            if geom is None or geom.is_empty:
                continue

            if edge in self.boundary_edges:
                boundary_geometries.append(geom)
                continue

            car_free = is_car_free_highway(get_highway(data))

            if edge in self.modal_filters:
                # Filtered roads are driven up to the filter from both sides
                car_graph.add_node(u)
                car_graph.add_node(v)
                first_half, second_half = split_at_midpoint(geom)
                segments.append(RoadSegment(edge, first_half, u, car_free=False))
                segments.append(RoadSegment(edge, second_half, v, car_free=False))
            elif car_free:
                car_free_graph.add_edge(u, v)
                segments.append(RoadSegment(edge, geom, u, car_free=True))
            else:
                car_graph.add_edge(u, v)
                segments.append(RoadSegment(edge, geom, u, car_free=False))

        car_cells = self._number_components(car_graph, first_id=0)
        car_free_cells = self._number_components(car_free_graph, first_id=len(set(car_cells.values())))
        self._car_free_cells = set(car_free_cells.values())

        for segment in segments:
            lookup = car_free_cells if segment.car_free else car_cells
            cell_id = lookup[segment.node]
            self._geometries.append(segment.geometry)
            self._segment_cells.append(cell_id)
            edges = self._cell_edges.setdefault(cell_id, [])
            if segment.edge not in edges:
                edges.append(segment.edge)

        for geom in boundary_geometries:
            self._geometries.append(geom)
            self._segment_cells.append(BOUNDARY_MARKER)

        for edges in self._cell_edges.values():
            edges.sort(key=edge_sort_key)

        if self._geometries:
            self._tree = STRtree(self._geometries)

        logger.info(
            "Road network split into %d cells (%d car-free) from %d segments, %d boundary roads",
            len(self._cell_edges),
            len(self._car_free_cells),
            len(segments),
            len(boundary_geometries),
        )

    @staticmethod
    def _number_components(G: nx.Graph, first_id: int) -> dict[Any, int]:
        """Map each node to a cell ID, numbering components by their smallest node."""
        components = sorted(
            (sorted(component, key=node_sort_key) for component in nx.connected_components(G)),
            key=lambda nodes: node_sort_key(nodes[0]),
        )

        node_to_cell: dict[Any, int] = {}
        for offset, nodes in enumerate(components):
            for node in nodes:
                node_to_cell[node] = first_id + offset
        return node_to_cell

    def query(self, position: Position) -> int:
        """
        Get the cell of the road nearest to a position.

        Args:
            position: Planar (x, y) in the graph's coordinate system

        Returns:
            Cell ID, or BOUNDARY_MARKER if the nearest road is a boundary road
            or no road is within max_distance
        """
        if self._tree is None:
            return BOUNDARY_MARKER

        point = Point(position[0], position[1])
        if self.max_distance is None:
            matches = self._tree.query_nearest(point)
        else:
            matches = self._tree.query_nearest(point, max_distance=self.max_distance)

        if len(matches) == 0:
            return BOUNDARY_MARKER

        # Ties go to the first indexed segment
        return self._segment_cells[int(np.min(matches))]

    def is_car_free(self, cell_id: int) -> bool:
        """Check whether every road in a cell is car-free."""
        return cell_id in self._car_free_cells

    def cells(self) -> dict[int, list[EdgeKey]]:
        """Get the edges making up each cell."""
        return {cell_id: list(edges) for cell_id, edges in self._cell_edges.items()}
