from pydantic import BaseModel, Field, field_validator
from typing import Optional
import re


HEX_COLOR_PATTERN = r"^#[0-9a-fA-F]{6}$"


class RoadSegmentInput(BaseModel):
    """A street graph edge supplied by the caller."""
    u: int  # Source node ID
    v: int  # Target node ID
    key: int = 0  # Edge key for multigraph
    coordinates: list[tuple[float, float]] = Field(..., min_length=2)
    highway: str = "residential"
    is_boundary: bool = False  # Part of the neighbourhood perimeter
    modal_filter: bool = False  # Has a modal filter somewhere along it
    oneway: bool = False
    length_m: Optional[float] = None


class CellRenderRequest(BaseModel):
    """Request for rendering the traffic cells of a neighbourhood."""
    boundary: list[tuple[float, float]] = Field(..., description="Ordered boundary polygon points")
    roads: list[RoadSegmentInput] = []
    cell_size: Optional[float] = Field(default=None, gt=0)
    connectivity: Optional[int] = None
    palette: Optional[list[str]] = None
    car_free_color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    max_distance: Optional[float] = Field(default=None, gt=0)
    detect_existing_filters: bool = False

    @field_validator("connectivity")
    @classmethod
    def check_connectivity(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in (4, 8):
            raise ValueError("connectivity must be 4 or 8")
        return value

    @field_validator("palette")
    @classmethod
    def check_palette(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return value
        if not value:
            raise ValueError("palette must contain at least one color")
        for color in value:
            if not re.fullmatch(HEX_COLOR_PATTERN, color):
                raise ValueError(f"invalid color: {color}")
        return value


class CellRenderResponse(BaseModel):
    """Rasterized and colored traffic cells."""
    origin_x: float
    origin_y: float
    cell_size: float
    rows: int
    cols: int
    grid: list[list[int]]  # Row-major cell IDs, -1 outside any cell
    colors: dict[int, str]
    car_free_cells: list[int]
    adjacency: list[tuple[int, int]]  # Sorted, both orders present
    processing_time_seconds: float

