from fastapi import APIRouter, HTTPException
from concurrent.futures import ThreadPoolExecutor
from shapely.geometry import LineString
import networkx as nx
import asyncio
import logging
import time

from ltn_cells.core.config import get_settings
from ltn_cells.models.schemas import (
    CellRenderRequest,
    CellRenderResponse,
    RoadSegmentInput,
)
from ltn_cells.services.cells.pipeline import CellRenderer
from ltn_cells.services.network.road_graph import RoadNetworkOracle

router = APIRouter()
logger = logging.getLogger(__name__)

# Thread pool for CPU-bound rendering
render_executor = ThreadPoolExecutor(max_workers=2)


def build_road_graph(roads: list[RoadSegmentInput]) -> nx.MultiDiGraph:
    """
    Build an OSMnx-style street graph from request road segments.

    Node coordinates are taken from the first and last point of each segment.
    """
    graph = nx.MultiDiGraph()

    for road in roads:
        start = road.coordinates[0]
        end = road.coordinates[-1]
        if road.u not in graph.nodes:
            graph.add_node(road.u, x=start[0], y=start[1])
        if road.v not in graph.nodes:
            graph.add_node(road.v, x=end[0], y=end[1])

        attrs = {
            "geometry": LineString(road.coordinates),
            "highway": road.highway,
            "oneway": road.oneway,
        }
        if road.length_m is not None:
            attrs["length"] = road.length_m

        graph.add_edge(road.u, road.v, key=road.key, **attrs)

    return graph


def run_render_sync(request: CellRenderRequest) -> CellRenderResponse:
    """
    Render the cells synchronously in a worker thread.
    """
    settings = get_settings()
    start_time = time.time()

    graph = build_road_graph(request.roads)
    oracle = RoadNetworkOracle(
        graph=graph,
        boundary_edges=[(r.u, r.v, r.key) for r in request.roads if r.is_boundary],
        modal_filters=[(r.u, r.v, r.key) for r in request.roads if r.modal_filter],
        max_distance=request.max_distance or settings.road_max_distance,
        include_existing_filters=request.detect_existing_filters,
    )

    renderer = CellRenderer(
        palette=settings.palette if request.palette is None else request.palette,
        car_free_color=request.car_free_color or settings.car_free_color,
        connectivity=request.connectivity or settings.connectivity,
        workers=settings.rasterize_workers,
    )
    rendering = renderer.render(
        polygon=request.boundary,
        cell_size=request.cell_size or settings.cell_size,
        oracle=oracle,
        is_car_free=oracle.is_car_free,
    )

    grid = rendering.grid
    return CellRenderResponse(
        origin_x=grid.origin_x,
        origin_y=grid.origin_y,
        cell_size=grid.cell_size,
        rows=grid.rows,
        cols=grid.cols,
        grid=grid.ids.tolist(),
        colors=rendering.colors,
        car_free_cells=sorted(c for c in rendering.colors if oracle.is_car_free(c)),
        adjacency=sorted(rendering.adjacency),
        processing_time_seconds=round(time.time() - start_time, 3),
    )


@router.post("/cells/render", response_model=CellRenderResponse)
async def render_cells(request: CellRenderRequest):
    """
    Partition a neighbourhood boundary into colored traffic cells.

    Roads are grouped into cells by car connectivity (modal filters cut
    connections), the boundary is rasterized into a grid, and cells are
    colored so that touching cells differ.
    """
    try:
        logger.info(
            "Received /cells/render request (roads=%d cell_size=%s)",
            len(request.roads),
            request.cell_size,
        )
        loop = asyncio.get_event_loop()
        response = await loop.run_in_executor(render_executor, run_render_sync, request)
        logger.info(
            "Completed /cells/render request (%dx%d grid, %d cells)",
            response.rows,
            response.cols,
            len(response.colors),
        )
        return response
    except ValueError as e:
        logger.warning("Validation error in /cells/render: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Unhandled error in /cells/render")
        raise HTTPException(status_code=500, detail=f"Error rendering cells: {str(e)}")
