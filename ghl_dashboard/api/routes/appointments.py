"""Calendar appointments for one day."""

from datetime import date

import structlog
from fastapi import APIRouter, Depends, Query

from ghl_dashboard.api.deps import DashboardServices, get_services
from ghl_dashboard.kernel.time import utc_now

logger = structlog.get_logger()

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.get("")
async def appointments_for_day(
    day: date | None = Query(default=None, alias="date", description="YYYY-MM-DD, UTC. Defaults to today."),
    services: DashboardServices = Depends(get_services),
):
    services.require_oauth()
    day = day or utc_now().date()
    events = await services.client.appointments_for_day(day)
    # Kept so the lead views can flag contacts with appointments.
    services.remember_appointments(events)
    logger.info("Fetched appointments", date=day.isoformat(), count=len(events))
    return {"date": day.isoformat(), "events": events, "count": len(events)}
