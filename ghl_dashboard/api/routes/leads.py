"""
Lead API Routes

Sync control over the contacts snapshot, and the lead views read from it:
- Start / cancel / inspect a sync pass, stream its events
- Search, filter and sort the synced leads
- Per-lead detail, deep sync and appointments
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse

from ghl_dashboard.api.deps import DashboardServices, get_services
from ghl_dashboard.connectors.sources.crm.highlevel import HighLevelAction
from ghl_dashboard.kernel.errors import NotFoundError
from ghl_dashboard.query.views import FilterState, LeadFilters, SortDirection, SortSpec, query_records

logger = structlog.get_logger()

router = APIRouter(prefix="/leads", tags=["Leads"])

HEARTBEAT_SECONDS = 15.0


def _sync_status(services: DashboardServices) -> dict[str, Any]:
    state = services.engine.state
    return {
        "status": state.status.value,
        "running": services.engine.is_running,
        "incomplete": state.incomplete,
        "progress": {"current": state.progress.current, "total": state.progress.total},
        "pages_fetched": state.pages_fetched,
        "records": len(services.snapshot),
        "error": state.error_message,
        "started_at": state.started_at.isoformat() if state.started_at else None,
        "completed_at": state.completed_at.isoformat() if state.completed_at else None,
    }


# =============================================================================
# SYNC CONTROL
# =============================================================================


@router.post("/sync")
async def start_sync(response: Response, services: DashboardServices = Depends(get_services)):
    """Start a full pass in the background. A pass already in flight is left alone."""
    services.require_oauth()
    task = services.engine.start()
    if task is None:
        response.status_code = 200
        return {"started": False, "sync": _sync_status(services)}
    response.status_code = 202
    return {"started": True}


@router.delete("/sync")
async def cancel_sync(services: DashboardServices = Depends(get_services)):
    return {"cancelled": services.engine.cancel()}


@router.get("/sync")
async def sync_status(services: DashboardServices = Depends(get_services)):
    return _sync_status(services)


def _format_sse_event(data: dict[str, Any], event_type: str | None = None) -> str:
    lines = []
    if event_type:
        lines.append(f"event: {event_type}")
    lines.append(f"data: {json.dumps(data)}")
    lines.append("")
    lines.append("")
    return "\n".join(lines)


async def _sync_event_generator(request: Request, services: DashboardServices) -> AsyncIterator[str]:
    yield _format_sse_event(_sync_status(services), event_type="connected")

    queue = services.broadcaster.open_queue()
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                yield _format_sse_event({"type": "heartbeat"}, event_type="heartbeat")
                continue
            yield _format_sse_event(event.model_dump(mode="json"), event_type=f"sync.{event.event_type}")
    finally:
        services.broadcaster.close_queue(queue)
        logger.debug("Sync event stream closed")


@router.get("/sync/events")
async def stream_sync_events(request: Request, services: DashboardServices = Depends(get_services)):
    """
    Stream sync progress via Server-Sent Events (SSE).

    Events: `connected` (current status), `sync.started`, `sync.progress`,
    `sync.completed`, `sync.partial`, `sync.failed`, `sync.cancelled`, `heartbeat`.
    """
    return StreamingResponse(
        _sync_event_generator(request, services),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# =============================================================================
# LEAD VIEWS
# =============================================================================


@router.get("")
async def list_leads(
    search: str | None = Query(default=None, description="Case-insensitive match on name, email, phone, source"),
    resume: FilterState = Query(default=FilterState.ANY),
    appointment: FilterState = Query(default=FilterState.ANY),
    sort: str = Query(default="name", description="Field to sort by, or 'name' for the display name"),
    direction: SortDirection = Query(default=SortDirection.ASC),
    services: DashboardServices = Depends(get_services),
):
    leads = query_records(
        services.snapshot,
        services.auxiliary(),
        search=search,
        filters=LeadFilters(resume=resume, appointment=appointment),
        sort=SortSpec(field=sort, direction=direction),
    )
    state = services.engine.state
    return {
        "leads": leads,
        "count": len(leads),
        "total": len(services.snapshot),
        "sync": {"status": state.status.value, "incomplete": state.incomplete},
    }


@router.get("/{lead_id}")
async def get_lead(lead_id: str, services: DashboardServices = Depends(get_services)):
    record = services.snapshot.get(lead_id)
    if record is None:
        raise NotFoundError(message="Lead not found", meta={"lead_id": lead_id})
    return record


@router.post("/{lead_id}/refresh")
async def refresh_lead(lead_id: str, services: DashboardServices = Depends(get_services)):
    """Deep sync one lead from HighLevel into the snapshot."""
    services.require_oauth()
    record = await services.engine.deep_sync(lead_id)
    if record is None:
        raise NotFoundError(message="Lead not found in HighLevel", meta={"lead_id": lead_id})
    return record


@router.get("/{lead_id}/appointments")
async def lead_appointments(lead_id: str, services: DashboardServices = Depends(get_services)):
    services.require_oauth()
    data = await services.client.invoke(HighLevelAction.GET_CONTACT_APPOINTMENTS, {"contactId": lead_id})
    events = [event for event in data.get("events") or [] if isinstance(event, dict)]
    services.remember_appointments(events)
    return {"events": events, "count": len(events)}
