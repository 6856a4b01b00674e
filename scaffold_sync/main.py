"""
FastAPI application entry point.
"""

from fastapi import FastAPI

from scaffold_sync import __version__
from scaffold_sync.api import sync
from scaffold_sync.config import settings
from scaffold_sync.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

app = FastAPI(
    title="Scaffold Sync",
    description="Keeps scaffolded repositories in sync with their templates",
    version=__version__
)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "version": __version__}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Scaffold Sync API",
        "version": __version__,
        "docs": "/docs"
    }


app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    """Load the catalog on application startup."""
    logger.info("Starting Scaffold Sync API")
    catalog = sync.get_catalog()
    logger.info(f"Catalog ready with {len(catalog.list_entities())} entities")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
