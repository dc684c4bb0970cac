"""
Service wiring for the HTTP layer.

One DashboardServices instance per process holds the session: the credential
store, the gateway, the sync engine with its snapshot, and the auxiliary
collections the lead views read.
"""

from typing import Any

import httpx
import structlog

from ghl_dashboard.config import Settings, get_settings
from ghl_dashboard.connectors.auth.exchange import ExchangeIdempotencyCache, TokenExchange
from ghl_dashboard.connectors.auth.gateway import AuthenticatedGateway
from ghl_dashboard.connectors.auth.oauth2 import OAuth2Client, OAuth2ProviderConfig
from ghl_dashboard.connectors.auth.token_store import (
    CredentialStore,
    InMemoryCredentialStore,
    PostgresCredentialStore,
)
from ghl_dashboard.connectors.base.records import Snapshot
from ghl_dashboard.connectors.http import RetryPolicy
from ghl_dashboard.connectors.sources.crm.highlevel import ContactCollection, HighLevelClient
from ghl_dashboard.connectors.sync_engine import PaginationSyncEngine
from ghl_dashboard.connectors.sync_events import SyncEventBroadcaster
from ghl_dashboard.query.views import AuxiliaryCollections

logger = structlog.get_logger()


def build_credential_store(settings: Settings) -> CredentialStore:
    if settings.credential_store == "postgres":
        return PostgresCredentialStore()
    key = settings.token_encryption_key.encode() if settings.token_encryption_key else None
    return InMemoryCredentialStore(encryption_key=key)


class DashboardServices:
    """Everything a request handler needs, built once from settings."""

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        token_http_client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            settings: Application settings
            store: Credential store; chosen by CREDENTIAL_STORE when omitted
            http_client: Client for the HighLevel API (base_url is set here when omitted)
            token_http_client: Client for the token endpoint; per-call clients when omitted
        """
        self.settings = settings
        self.store = store or build_credential_store(settings)
        self.http_client = http_client or httpx.AsyncClient(
            base_url=settings.ghl_api_base_url,
            timeout=settings.http_timeout_seconds,
        )

        self.oauth = OAuth2Client(
            OAuth2ProviderConfig.from_settings(settings, require=False),
            http_client=token_http_client,
        )
        self.gateway = AuthenticatedGateway(
            store=self.store,
            oauth=self.oauth,
            http_client=self.http_client,
            api_version=settings.ghl_api_version,
        )
        self.exchange_cache = ExchangeIdempotencyCache(ttl_seconds=settings.exchange_cache_ttl_seconds)
        self.exchange = TokenExchange(
            oauth=self.oauth,
            store=self.store,
            cache=self.exchange_cache,
            on_connected=lambda _credential: self.gateway.invalidate_scope(),
        )

        self.client = HighLevelClient(self.gateway)
        self.snapshot = Snapshot()
        self.broadcaster = SyncEventBroadcaster()
        self.engine = PaginationSyncEngine(
            ContactCollection(self.client),
            snapshot=self.snapshot,
            broadcaster=self.broadcaster,
            page_size=settings.sync_page_size,
            page_delay=settings.sync_page_delay_seconds,
            retry_policy=RetryPolicy(
                max_retries=settings.sync_max_page_retries,
                base_backoff=settings.sync_retry_base_seconds,
            ),
        )
        self.appointments: dict[str, dict[str, Any]] = {}

    def require_oauth(self) -> None:
        self.settings.require_oauth_settings()

    def remember_appointments(self, events: list[dict[str, Any]]) -> None:
        """Add events to the session's appointment collection, keyed by id."""
        for event in events:
            event_id = event.get("id")
            if event_id:
                self.appointments[str(event_id)] = event

    def auxiliary(self) -> AuxiliaryCollections:
        return AuxiliaryCollections(
            custom_fields=list(self.engine.reference.get("custom_fields") or []),
            appointments=list(self.appointments.values()),
        )

    def reset_session(self) -> None:
        """Drop everything derived from the current connection."""
        self.engine.cancel()
        self.snapshot.reset()
        self.engine.reference = {}
        self.appointments.clear()
        self.gateway.invalidate_scope()

    async def aclose(self) -> None:
        self.engine.cancel()
        await self.engine.wait_idle()
        await self.http_client.aclose()


_services: DashboardServices | None = None


def get_services() -> DashboardServices:
    global _services
    if _services is None:
        _services = DashboardServices(get_settings())
        logger.info("Dashboard services initialized", credential_store=_services.settings.credential_store)
    return _services


async def reset_services() -> None:
    global _services
    if _services is not None:
        await _services.aclose()
        _services = None
