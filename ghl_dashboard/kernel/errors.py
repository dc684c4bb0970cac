from __future__ import annotations

import re
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class DashboardError(Exception):
    """Base typed error for the dashboard backend.

    - Stable `code` for programmatic handling across clients.
    - Human-readable `message` for UI surfaces.
    - Optional `meta` payload for debugging (safe-to-expose only).
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 500,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.meta = dict(meta or {})

    def to_public_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
        }
        if self.meta:
            payload["details"] = self.meta
        return payload


class NotFoundError(DashboardError):
    def __init__(self, *, message: str = "Not found", code: str = "resource.not_found", meta: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, status_code=404, meta=meta)


class ValidationError(DashboardError):
    def __init__(
        self,
        *,
        message: str = "Validation error",
        code: str = "request.validation_error",
        meta: dict[str, Any] | None = None,
        status_code: int = 422,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class ConfigurationError(DashboardError):
    """Operator-facing: required configuration is absent. Never retried."""

    def __init__(
        self,
        *,
        message: str = "Service is not configured",
        code: str = "config.missing",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=500, meta=meta)


class UnauthenticatedError(DashboardError):
    def __init__(
        self,
        *,
        message: str = "No connected HighLevel account found",
        code: str = "auth.unauthenticated",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=401, meta=meta)


class ReauthorizationRequiredError(DashboardError):
    def __init__(
        self,
        *,
        message: str = "Token refresh failed. Please reconnect your HighLevel account.",
        code: str = "auth.reauthorization_required",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=401, meta=meta)


class InvalidGrantError(DashboardError):
    """The authorization code was rejected: expired, reused, or redirect URI mismatch."""

    def __init__(
        self,
        *,
        message: str = "The authorization code is invalid, expired, or was already used. Please reconnect.",
        code: str = "oauth.invalid_grant",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=400, meta=meta)


class MalformedProviderResponseError(DashboardError):
    def __init__(
        self,
        *,
        message: str = "HighLevel returned an unexpected response",
        code: str = "oauth.malformed_response",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=502, meta=meta)


class CredentialPersistenceError(DashboardError):
    def __init__(
        self,
        *,
        message: str = "Connected to HighLevel but the credentials could not be saved",
        code: str = "credentials.persistence_failed",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=500, meta=meta)


class UpstreamError(DashboardError):
    """Transport-level or provider-side failure (timeouts, 5xx, unreadable bodies)."""

    def __init__(
        self,
        *,
        message: str = "Upstream service error",
        code: str = "upstream.error",
        meta: dict[str, Any] | None = None,
        status_code: int = 502,
        retryable: bool = True,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)
        self.retryable = retryable


class ProviderRequestError(UpstreamError):
    """A non-2xx response from the CRM API, carrying the provider's status and body."""

    def __init__(
        self,
        *,
        status_code: int,
        message: str = "HighLevel request failed",
        code: str = "upstream.request_failed",
        meta: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(
            message=message,
            code=code,
            meta=meta,
            status_code=status_code,
            retryable=retryable,
        )
