"""
Health Check Routes

System health and status endpoints.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from photo_gps import __version__
from photo_gps.database import get_db
from photo_gps.schemas import HealthResponse
from photo_gps.services.storage import get_storage_service
from photo_gps.services.vision import get_vision_client

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Health check endpoint.

    Returns overall system health and individual service statuses.
    An unconfigured vision service is reported but does not degrade health,
    since the pipeline runs without it.
    """
    services = {}

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        services["database"] = "healthy"
    except Exception as e:
        logger.error("Database health check failed: %s", type(e).__name__)
        services["database"] = "unhealthy"

    # Check MinIO
    try:
        storage = get_storage_service()
        services["storage"] = "healthy" if storage.health_check() else "unhealthy"
    except Exception as e:
        logger.error("Storage health check failed: %s", type(e).__name__)
        services["storage"] = "unhealthy"

    vision_state = "configured" if get_vision_client().configured else "not_configured"

    # Overall status
    all_healthy = all(s == "healthy" for s in services.values())
    services["vision"] = vision_state

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=__version__,
        services=services,
    )


@router.get("/health/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(db: AsyncSession = Depends(get_db)):
    """
    Kubernetes readiness probe.

    Returns 200 if the application is ready to serve requests.
    """
    try:
        # Quick database check
        await db.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception:
        logger.error("Readiness check failed")
        return {"status": "not ready"}
