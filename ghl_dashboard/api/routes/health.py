"""Health check endpoints."""

import structlog
from fastapi import APIRouter, Depends

from ghl_dashboard import __version__
from ghl_dashboard.api.deps import DashboardServices, get_services
from ghl_dashboard.kernel.time import utc_now

router = APIRouter()
logger = structlog.get_logger()

# Track startup time
_startup_time = utc_now()


@router.get("/health")
async def health_check(services: DashboardServices = Depends(get_services)):
    """
    Basic health check endpoint.
    Returns 200 if the service is running, and reports missing OAuth configuration.
    """
    missing = services.settings.missing_oauth_env()
    return {
        "status": "healthy",
        "service": "ghl-dashboard",
        "version": __version__,
        "timestamp": utc_now().isoformat(),
        "uptime_seconds": (utc_now() - _startup_time).total_seconds(),
        "oauth_configured": not missing,
        "missing_env": missing,
    }
