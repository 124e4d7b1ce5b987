"""
Main API router for Registrations Service.
Combines all API endpoints and provides health checks.
"""

from fastapi import APIRouter
import logging

from registrations_service.api.dependencies import check_service_health
from registrations_service.schemas.common import HealthCheckResponse

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"

# Create main router
router = APIRouter(prefix="/api/v1")

# Include sub-routers
from registrations_service.api.v1.events import router as events_router  # noqa: E402
from registrations_service.api.v1.registrations import router as registrations_router  # noqa: E402
from registrations_service.api.v1.teams import router as teams_router  # noqa: E402
from registrations_service.api.v1.payments import router as payments_router  # noqa: E402

router.include_router(events_router)
router.include_router(registrations_router)
router.include_router(teams_router)
router.include_router(payments_router)


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """
    Health check endpoint for the registrations service.

    Returns:
        Service health status
    """
    try:
        health_status = await check_service_health()

        return HealthCheckResponse(
            status="healthy" if health_status["overall"] == "healthy" else "unhealthy",
            version=SERVICE_VERSION,
            database=health_status["database"],
            redis=health_status["redis"]
        )

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return HealthCheckResponse(
            status="unhealthy",
            version=SERVICE_VERSION,
            database="unknown",
            redis="unknown"
        )


@router.get("/info")
async def service_info():
    """Service information endpoint."""
    return {
        "service": "Registrations Service",
        "version": SERVICE_VERSION,
        "description": "Event registration lifecycle engine",
        "endpoints": {
            "events": "/api/v1/events",
            "registrations": "/api/v1/registrations",
            "teams": "/api/v1/teams",
            "payments": "/api/v1/payments",
            "health": "/api/v1/health",
            "docs": "/docs"
        }
    }
