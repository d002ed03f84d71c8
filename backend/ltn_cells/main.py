from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from ltn_cells.core.config import get_settings
from ltn_cells.api.routes import cells

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    description="API for partitioning neighbourhoods into colored traffic cells",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cells.router, prefix=settings.api_v1_prefix, tags=["cells"])


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs",
        "render": f"{settings.api_v1_prefix}/cells/render",
        "cell_size": settings.cell_size,
        "connectivity": settings.connectivity,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
