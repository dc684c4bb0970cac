"""
HTTP helpers for connectors.

Provides backoff policy and error classification for transient failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from ghl_dashboard.kernel.errors import ProviderRequestError, UpstreamError

logger = structlog.get_logger()


RETRY_STATUSES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: base, 2*base, 4*base, ... capped at max_backoff."""

    max_retries: int = 3
    base_backoff: float = 1.0
    max_backoff: float = 8.0

    def delay_for(self, retry: int) -> float:
        """Delay before the given retry (1-based)."""
        return min(self.max_backoff, self.base_backoff * (2 ** (retry - 1)))

    def delays(self) -> list[float]:
        return [self.delay_for(retry) for retry in range(1, self.max_retries + 1)]


def is_retryable(error: BaseException) -> bool:
    """Decide whether a failed request is worth repeating."""
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(error, UpstreamError):
        return error.retryable
    return False


def _response_details(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def raise_for_provider_status(response: httpx.Response) -> None:
    """Convert a non-2xx provider response into a ProviderRequestError."""
    if response.is_success:
        return

    details = _response_details(response)
    message = "HighLevel request failed"
    if isinstance(details, dict):
        message = str(details.get("message") or details.get("error") or message)

    logger.warning(
        "Provider request failed",
        status_code=response.status_code,
        url=str(response.request.url) if response.request else None,
    )
    raise ProviderRequestError(
        status_code=response.status_code,
        message=message,
        meta={"provider_status": response.status_code, "body": details},
        retryable=response.status_code in RETRY_STATUSES,
    )


def decode_json(response: httpx.Response) -> Any:
    """Decode any provider JSON body; unreadable bodies are transient upstream errors."""
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(
            message="HighLevel returned a body that is not valid JSON",
            meta={"provider_status": response.status_code, "error": str(e)},
        ) from e


def read_json(response: httpx.Response) -> dict[str, Any]:
    """Decode a provider JSON body that must be an object."""
    data = decode_json(response)
    if not isinstance(data, dict):
        raise UpstreamError(
            message="HighLevel returned an unexpected JSON payload",
            meta={"provider_status": response.status_code, "type": type(data).__name__},
        )
    return data
