"""
Tests for the grid rasterizer.
"""

import math

import numpy as np
import pytest
from shapely.geometry import Polygon

from ltn_cells.services.cells.rasterizer import (
    BOUNDARY_MARKER,
    CellGrid,
    FunctionOracle,
    rasterize,
)


class RecordingOracle:
    """Oracle that records every position it is asked about."""

    def __init__(self, func):
        self.func = func
        self.calls = []

    def query(self, position):
        self.calls.append(position)
        return self.func(position)


class TestRasterize:
    """Tests for rasterize()."""

    def setup_method(self):
        """Set up test fixtures."""
        self.square = Polygon([(0, 0), (30, 0), (30, 30), (0, 30)])

    def test_grid_shape_from_bounding_box(self):
        """Test that grid dimensions follow the bounding box and cell size."""
        grid = rasterize(self.square, 10.0, FunctionOracle(lambda p: 0))
        assert (grid.rows, grid.cols) == (3, 3)

        grid = rasterize(self.square, 7.0, FunctionOracle(lambda p: 0))
        assert (grid.rows, grid.cols) == (math.ceil(30 / 7), math.ceil(30 / 7))

        wide = Polygon([(0, 0), (40, 0), (40, 20), (0, 20)])
        grid = rasterize(wide, 10.0, FunctionOracle(lambda p: 0))
        assert (grid.rows, grid.cols) == (2, 4)

    def test_origin_and_centers(self):
        """Test that the grid is anchored at the bounding box minimum."""
        shifted = Polygon([(100, 200), (130, 200), (130, 230), (100, 230)])
        grid = rasterize(shifted, 10.0, FunctionOracle(lambda p: 0))

        assert grid.origin_x == 100
        assert grid.origin_y == 200
        assert grid.center(0, 0) == (105.0, 205.0)
        assert grid.center(2, 1) == (115.0, 225.0)

    def test_oracle_queried_once_per_position_in_row_major_order(self):
        """Test oracle call count and visiting order."""
        oracle = RecordingOracle(lambda p: 1)
        rasterize(self.square, 10.0, oracle)

        assert len(oracle.calls) == 9
        assert len(set(oracle.calls)) == 9
        assert oracle.calls == sorted(oracle.calls, key=lambda p: (p[1], p[0]))
        assert oracle.calls[0] == (5.0, 5.0)
        assert oracle.calls[1] == (15.0, 5.0)

    def test_positions_outside_polygon_get_marker(self):
        """Test that only positions with centers inside the polygon are queried."""
        triangle = Polygon([(0, 0), (30, 0), (0, 30)])
        oracle = RecordingOracle(lambda p: 4)
        grid = rasterize(triangle, 10.0, oracle)

        expected = np.array([
            [4, 4, BOUNDARY_MARKER],
            [4, BOUNDARY_MARKER, BOUNDARY_MARKER],
            [BOUNDARY_MARKER, BOUNDARY_MARKER, BOUNDARY_MARKER],
        ])
        assert np.array_equal(grid.ids, expected)
        assert len(oracle.calls) == 3

    def test_oracle_no_cell_becomes_marker(self):
        """Test that None and the marker from the oracle both mean no cell."""
        def assign(position):
            x, _ = position
            if x < 10:
                return None
            if x < 20:
                return BOUNDARY_MARKER
            return 3

        grid = rasterize(self.square, 10.0, FunctionOracle(assign))
        assert np.all(grid.ids[:, 0] == BOUNDARY_MARKER)
        assert np.all(grid.ids[:, 1] == BOUNDARY_MARKER)
        assert np.all(grid.ids[:, 2] == 3)
        assert grid.cell_ids() == [3]

    def test_accepts_point_sequence(self):
        """Test that a plain list of points works like a Polygon."""
        points = [(0, 0), (30, 0), (30, 30), (0, 30)]
        from_points = rasterize(points, 10.0, FunctionOracle(lambda p: 2))
        from_polygon = rasterize(self.square, 10.0, FunctionOracle(lambda p: 2))
        assert np.array_equal(from_points.ids, from_polygon.ids)

        closed = points + [points[0]]
        from_closed = rasterize(closed, 10.0, FunctionOracle(lambda p: 2))
        assert np.array_equal(from_closed.ids, from_polygon.ids)

    def test_cell_size_larger_than_bounding_box(self):
        """Test that an oversized cell gives a 1x1 marker grid without queries."""
        oracle = RecordingOracle(lambda p: 1)
        grid = rasterize(self.square, 100.0, oracle)

        assert grid.ids.shape == (1, 1)
        assert grid.ids[0, 0] == BOUNDARY_MARKER
        assert grid.is_empty()
        assert grid.cell_ids() == []
        assert oracle.calls == []

    def test_zero_area_polygon(self):
        """Test that collinear or too few points give a 1x1 marker grid."""
        oracle = RecordingOracle(lambda p: 1)

        for points in ([(0, 0), (10, 0), (20, 0)], [(0, 0), (10, 10)], []):
            grid = rasterize(points, 1.0, oracle)
            assert grid.ids.shape == (1, 1)
            assert grid.ids[0, 0] == BOUNDARY_MARKER

        assert oracle.calls == []

    def test_self_intersecting_polygon_degrades(self):
        """Test that a bowtie polygon is repaired instead of rejected."""
        bowtie = Polygon([(0, 0), (20, 20), (20, 0), (0, 20)])
        assert not bowtie.is_valid

        grid = rasterize(bowtie, 2.0, FunctionOracle(lambda p: 1))
        assert grid.ids.ndim == 2
        assert grid.rows >= 1 and grid.cols >= 1
        assert set(np.unique(grid.ids)) <= {1, BOUNDARY_MARKER}

    @pytest.mark.parametrize("cell_size", [0, -1.0, float("nan"), float("inf")])
    def test_invalid_cell_size(self, cell_size):
        """Test that non-positive or non-finite cell sizes are rejected."""
        with pytest.raises(ValueError):
            rasterize(self.square, cell_size, FunctionOracle(lambda p: 0))

    @pytest.mark.parametrize("bad_result", [-5, "a", 1.5, True])
    def test_invalid_oracle_result(self, bad_result):
        """Test that the oracle must answer with a cell ID, the marker or None."""
        with pytest.raises(ValueError):
            rasterize(self.square, 10.0, FunctionOracle(lambda p: bad_result))

    def test_numpy_integer_results_accepted(self):
        """Test that numpy integer cell IDs are accepted."""
        grid = rasterize(self.square, 10.0, FunctionOracle(lambda p: np.int32(6)))
        assert grid.cell_ids() == [6]

    @pytest.mark.parametrize("workers", [1, 4])
    def test_oracle_errors_propagate(self, workers):
        """Test that an oracle failure aborts the rasterization."""
        def failing(position):
            if position[1] > 20:
                raise RuntimeError("broken road data")
            return 0

        with pytest.raises(RuntimeError, match="broken road data"):
            rasterize(self.square, 10.0, FunctionOracle(failing), workers=workers)

    def test_parallel_matches_sequential(self):
        """Test that threaded rasterization gives identical results."""
        polygon = Polygon([(0, 0), (97, 3), (80, 61), (12, 70)])

        def assign(position):
            x, y = position
            return int(x // 25) + 10 * int(y // 20)

        sequential = rasterize(polygon, 3.0, FunctionOracle(assign), workers=1)
        parallel = rasterize(polygon, 3.0, FunctionOracle(assign), workers=4)

        assert np.array_equal(sequential.ids, parallel.ids)
        assert sequential.origin_x == parallel.origin_x
        assert sequential.origin_y == parallel.origin_y

    def test_deterministic(self):
        """Test that repeated runs produce identical grids."""
        polygon = Polygon([(0, 0), (50, 5), (45, 40), (5, 35)])
        oracle = FunctionOracle(lambda p: int(p[0] // 10))

        first = rasterize(polygon, 4.0, oracle)
        second = rasterize(polygon, 4.0, oracle)
        assert first.ids.tobytes() == second.ids.tobytes()


class TestCellGrid:
    """Tests for the CellGrid container."""

    def test_cell_ids_sorted_without_marker(self):
        """Test that cell_ids lists each ID once in ascending order."""
        grid = CellGrid(
            ids=np.array([[5, 2, -1], [2, 9, -1]]),
            origin_x=0.0,
            origin_y=0.0,
            cell_size=1.0,
        )
        assert grid.cell_ids() == [2, 5, 9]
        assert grid.rows == 2
        assert grid.cols == 3
        assert not grid.is_empty()
