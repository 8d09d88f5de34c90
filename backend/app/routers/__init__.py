"""API Routers package."""

from app.routers import health as health_router
from app.routers import ingestion as ingestion_router

__all__ = ["health_router", "ingestion_router"]
