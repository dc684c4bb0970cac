"""
Token Exchange

Turns an authorization code from the provider redirect into the active
credential. Codes are single-use, so every code is remembered the moment it
is submitted; a replay of the same code (double callback, re-render, client
retry while the first exchange is in flight) returns without any network call.
"""

import time
from enum import Enum
from typing import Callable

import structlog
from pydantic import BaseModel

from ghl_dashboard.connectors.auth.oauth2 import OAuth2Client
from ghl_dashboard.connectors.auth.token_store import Credential, CredentialStore
from ghl_dashboard.kernel.errors import CredentialPersistenceError, ValidationError

logger = structlog.get_logger()


class ExchangeIdempotencyCache:
    """
    Authorization codes already submitted, each kept for a bounded lifetime.

    Injected into TokenExchange so tests (and a disconnect) can reset it.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [code for code, seen_at in self._seen.items() if now - seen_at >= self.ttl_seconds]
        for code in expired:
            del self._seen[code]

    def __contains__(self, code: str) -> bool:
        self._evict_expired()
        return code in self._seen

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._seen)

    def mark(self, code: str) -> bool:
        """Record a code. Returns False if it was already recorded."""
        self._evict_expired()
        if code in self._seen:
            return False
        self._seen[code] = self._clock()
        return True

    def clear(self) -> None:
        self._seen.clear()


class ExchangeStatus(str, Enum):
    CONNECTED = "connected"
    DUPLICATE = "duplicate"


class ExchangeResult(BaseModel):
    status: ExchangeStatus
    location_id: str | None = None

    @property
    def connected(self) -> bool:
        return self.status == ExchangeStatus.CONNECTED


def _code_prefix(code: str) -> str:
    return code[:6] + "..."


class TokenExchange:
    """
    One-shot authorization-code exchange.

    The only place a credential is created from scratch; the gateway only
    ever refreshes an existing one.
    """

    def __init__(
        self,
        oauth: OAuth2Client,
        store: CredentialStore,
        cache: ExchangeIdempotencyCache,
        on_connected: Callable[[Credential], None] | None = None,
    ):
        """
        Args:
            oauth: Token endpoint client
            store: Where the minted credential is persisted
            cache: Codes already submitted
            on_connected: Called after a new credential is stored (e.g. to reset cached listing scope)
        """
        self.oauth = oauth
        self.store = store
        self.cache = cache
        self.on_connected = on_connected

    async def exchange(self, code: str) -> ExchangeResult:
        """
        Exchange a code exactly once.

        Raises:
            ValidationError: empty or non-string code
            InvalidGrantError: code rejected by the provider
            UpstreamError: token endpoint unreachable or failing
            MalformedProviderResponseError: unusable token payload
            CredentialPersistenceError: tokens obtained but not stored
        """
        if not isinstance(code, str) or not code.strip():
            raise ValidationError(message="Authorization code is required", meta={"field": "code"})

        if not self.cache.mark(code):
            logger.info("Duplicate authorization code ignored", code_prefix=_code_prefix(code))
            return ExchangeResult(status=ExchangeStatus.DUPLICATE)

        # The code stays marked whatever happens below: the provider will not accept it twice.
        token_data = await self.oauth.exchange_code(code)
        credential = Credential.from_token_response(token_data)

        try:
            await self.store.upsert_credential(credential)
        except Exception as e:
            logger.error(
                "Failed to persist credential",
                location_id=credential.location_id,
                error=str(e),
            )
            raise CredentialPersistenceError(meta={"location_id": credential.location_id}) from e

        if self.on_connected is not None:
            self.on_connected(credential)

        logger.info(
            "HighLevel account connected",
            location_id=credential.location_id,
            user_type=credential.user_type,
        )
        return ExchangeResult(status=ExchangeStatus.CONNECTED, location_id=credential.location_id)
