"""
OAuth API Routes

Connect and disconnect the HighLevel account:
- Authorization redirect
- Callback / code exchange
- Connection status and explicit disconnect
"""

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from ghl_dashboard.api.deps import DashboardServices, get_services
from ghl_dashboard.kernel.errors import ValidationError

logger = structlog.get_logger()

router = APIRouter(prefix="/oauth", tags=["OAuth"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================


class ExchangeRequest(BaseModel):
    """Authorization code received on the redirect."""

    code: str = Field(..., description="Authorization code from the HighLevel redirect")


class ExchangeResponse(BaseModel):
    success: bool = True
    status: str
    location_id: str | None = None


# =============================================================================
# ROUTES
# =============================================================================


@router.get("/authorize")
async def authorize(
    redirect: bool = Query(default=True, description="Redirect the browser instead of returning JSON"),
    state: str | None = Query(default=None, description="Opaque CSRF state echoed back on the callback"),
    services: DashboardServices = Depends(get_services),
):
    """Send the browser to the HighLevel location chooser."""
    services.require_oauth()
    url = services.oauth.get_authorization_url(state=state)
    if redirect:
        return RedirectResponse(url=url, status_code=307)
    return {"authorization_url": url}


async def _run_exchange(code: str, services: DashboardServices) -> ExchangeResponse:
    services.require_oauth()
    result = await services.exchange.exchange(code)
    if result.connected:
        # A new connection invalidates whatever the previous one synced.
        services.reset_session()
    return ExchangeResponse(status=result.status.value, location_id=result.location_id)


@router.get("/callback", response_model=ExchangeResponse)
async def oauth_callback(
    code: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
    services: DashboardServices = Depends(get_services),
):
    """Provider redirect target: exchange the code for a credential."""
    if error:
        raise ValidationError(
            message=error_description or "Authorization was not granted",
            code="oauth.authorization_denied",
            status_code=400,
            meta={"provider_error": error},
        )
    if not code:
        raise ValidationError(message="Authorization code is required", meta={"field": "code"})
    return await _run_exchange(code, services)


@router.post("/exchange", response_model=ExchangeResponse)
async def exchange_code(
    request: ExchangeRequest,
    services: DashboardServices = Depends(get_services),
):
    """Exchange a code posted by the frontend callback page."""
    return await _run_exchange(request.code, services)


@router.get("/status")
async def connection_status(services: DashboardServices = Depends(get_services)):
    credential = await services.store.get_latest_credential()
    if credential is None:
        return {"connected": False, "location_id": None, "user_type": None, "expires_at": None}
    return {
        "connected": True,
        "location_id": credential.location_id,
        "user_type": credential.user_type,
        "company_id": credential.company_id,
        "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
        "is_expired": credential.is_expired,
    }


@router.delete("/connection")
async def disconnect(services: DashboardServices = Depends(get_services)):
    """Forget the active credential and everything synced with it."""
    credential = await services.store.get_latest_credential()
    services.reset_session()
    if credential is None:
        return {"disconnected": False}

    deleted = await services.store.delete_credential(credential.location_id)
    logger.info("HighLevel account disconnected", location_id=credential.location_id)
    return {"disconnected": deleted, "location_id": credential.location_id}
