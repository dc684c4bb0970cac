"""
Proxy API Route

Single entry point for authenticated HighLevel calls from the dashboard:
either a named action or a raw endpoint passthrough.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ghl_dashboard.api.deps import DashboardServices, get_services
from ghl_dashboard.kernel.errors import ValidationError

logger = structlog.get_logger()

router = APIRouter(tags=["Proxy"])


class ProxyRequest(BaseModel):
    """
    Either `action` (+ `params`) or `endpoint` (+ `method`, `body`).

    For actions, `body` is accepted as an alias of `params`.
    """

    action: str | None = None
    params: dict[str, Any] | None = None
    endpoint: str | None = None
    method: str = "GET"
    body: Any = None

    model_config = {"extra": "ignore"}


@router.post("/proxy")
async def proxy(
    request: ProxyRequest,
    services: DashboardServices = Depends(get_services),
):
    services.require_oauth()

    if request.action:
        params = request.params
        if params is None and isinstance(request.body, dict):
            params = request.body
        data = await services.client.invoke(request.action, params or {})
        if request.action == "get_contact_appointments":
            services.remember_appointments([e for e in data.get("events") or [] if isinstance(e, dict)])
        return JSONResponse(content=data)

    if request.endpoint:
        data = await services.client.passthrough(request.endpoint, request.method, request.body)
        return JSONResponse(content=data)

    raise ValidationError(message="No endpoint provided", meta={"field": "endpoint"})
