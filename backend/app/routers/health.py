"""
Health Check Endpoints

Provides health check endpoints for monitoring and orchestration.

Endpoints:
- GET /api/health - Basic health check
- GET /api/health/ready - Readiness check for orchestration systems
- GET /api/health/jobs - Scheduled maintenance jobs
"""

from fastapi import APIRouter, Request

from app.config import settings
from app.services.scheduler import get_scheduled_jobs

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """
    Basic health check.

    Returns a simple status response indicating the API is running.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check for orchestration systems.

    Ready once the orchestrator exists and the database answers.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        return {"ready": False, "error": "Orchestrator not started"}
    if orchestrator.persistence is not None and not await orchestrator.persistence.ping():
        return {"ready": False, "error": "Database unreachable"}
    return {"ready": True}


@router.get("/jobs")
async def scheduled_jobs():
    """Scheduled maintenance jobs with their next run times."""
    return {"jobs": get_scheduled_jobs()}
