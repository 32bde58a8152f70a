"""
API Routes

FastAPI routers for photo catalog endpoints.
"""

from photo_gps.routes.health import router as health_router
from photo_gps.routes.photos import router as photos_router

__all__ = ["health_router", "photos_router"]
