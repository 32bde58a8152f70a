"""
Photo GPS API

FastAPI application for the wildlife photo catalog's reprocessing pipeline
and similarity retrieval.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from photo_gps import __version__
from photo_gps.config import get_settings
from photo_gps.database import close_db, init_db
from photo_gps.routes import health_router, photos_router
from photo_gps.services.storage import get_storage_service
from photo_gps.services.vision import close_vision_client, get_vision_client

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Photo GPS API...")
    await init_db()
    logger.info("Database initialized")
    await asyncio.to_thread(get_storage_service().ensure_bucket)
    logger.info("Storage bucket ready")
    if not get_vision_client().configured:
        logger.warning("VISION_API_URL not set; photos will be processed without detection")

    yield

    # Shutdown
    logger.info("Shutting down Photo GPS API...")
    await close_vision_client()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Wildlife photo reprocessing and similarity search",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
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
app.include_router(health_router)
app.include_router(photos_router, prefix=settings.api_prefix)

# Prometheus metrics endpoint
Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "photo_gps.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
