from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "LTN Cells API"
    debug: bool = False

    # API settings
    api_v1_prefix: str = "/api/v1"

    # CORS settings
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Grid settings
    cell_size: float = 10.0  # in polygon units (meters for projected maps)
    connectivity: int = 8  # 4 or 8 neighbors
    rasterize_workers: int = 1

    # Coloring settings (None uses the built-in palette)
    palette: Optional[list[str]] = None
    car_free_color: str = "#0c9e3f"
    background_color: Optional[str] = None

    # Road snapping (None means every position snaps to the nearest road)
    road_max_distance: Optional[float] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
