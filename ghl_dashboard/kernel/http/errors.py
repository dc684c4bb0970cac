from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ghl_dashboard.kernel.errors import DashboardError

logger = structlog.get_logger()


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as `{error, code, details?}` JSON."""

    @app.exception_handler(DashboardError)
    async def _dashboard_error_handler(request: Request, exc: DashboardError) -> Response:
        if exc.status_code >= 500:
            logger.warning("Request failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_public_dict())

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> Response:
        payload: dict[str, Any] = {
            "error": exc.detail if isinstance(exc.detail, str) else "Request failed",
            "code": f"http.{exc.status_code}",
        }
        if not isinstance(exc.detail, str):
            payload["details"] = exc.detail
        headers = dict(exc.headers or {})
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        payload: dict[str, Any] = {
            "error": "Validation error",
            "code": "request.validation_error",
            "details": jsonable_errors(exc),
        }
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        logger.exception("Unhandled exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "code": "internal.unhandled"},
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
