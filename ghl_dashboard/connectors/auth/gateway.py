"""
Authenticated Request Gateway

Every outbound HighLevel API call goes through here. The gateway attaches the
active credential, and on a 401 refreshes it once and repeats the request once.

The refresh-and-retry cycle is an explicit state machine. RETRYING has no edge
back to REFRESHING, so a second 401 is handed back to the caller instead of
triggering another refresh.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

from ghl_dashboard.connectors.auth.oauth2 import OAuth2Client
from ghl_dashboard.connectors.auth.token_store import Credential, CredentialStore
from ghl_dashboard.kernel.errors import ReauthorizationRequiredError, UnauthenticatedError, UpstreamError

logger = structlog.get_logger()


class GatewayState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    RETRYING = "retrying"
    FAILED = "failed"


class GatewayEvent(str, Enum):
    CREDENTIAL_LOADED = "credential_loaded"
    CREDENTIAL_MISSING = "credential_missing"
    UNAUTHORIZED = "unauthorized"
    REFRESH_SUCCEEDED = "refresh_succeeded"
    REFRESH_FAILED = "refresh_failed"


TRANSITIONS: dict[tuple[GatewayState, GatewayEvent], GatewayState] = {
    (GatewayState.UNAUTHENTICATED, GatewayEvent.CREDENTIAL_LOADED): GatewayState.AUTHENTICATED,
    (GatewayState.UNAUTHENTICATED, GatewayEvent.CREDENTIAL_MISSING): GatewayState.FAILED,
    (GatewayState.AUTHENTICATED, GatewayEvent.UNAUTHORIZED): GatewayState.REFRESHING,
    (GatewayState.REFRESHING, GatewayEvent.REFRESH_SUCCEEDED): GatewayState.RETRYING,
    (GatewayState.REFRESHING, GatewayEvent.REFRESH_FAILED): GatewayState.FAILED,
}


class IllegalTransitionError(RuntimeError):
    def __init__(self, state: GatewayState, event: GatewayEvent):
        super().__init__(f"No transition from {state.value} on {event.value}")
        self.state = state
        self.event = event


class CallStateMachine:
    """Tracks one gateway call through the refresh-and-retry cycle."""

    def __init__(self) -> None:
        self.state = GatewayState.UNAUTHENTICATED
        self.history: list[GatewayState] = [self.state]

    def fire(self, event: GatewayEvent) -> GatewayState:
        next_state = TRANSITIONS.get((self.state, event))
        if next_state is None:
            raise IllegalTransitionError(self.state, event)
        self.state = next_state
        self.history.append(next_state)
        return next_state

    def can_fire(self, event: GatewayEvent) -> bool:
        return (self.state, event) in TRANSITIONS

    @property
    def refresh_count(self) -> int:
        return self.history.count(GatewayState.REFRESHING)


@dataclass(frozen=True)
class ListingScope:
    """Which contacts listing endpoint the active credential may use."""

    path: str
    params: dict[str, str]
    business_wide: bool

    @classmethod
    def for_credential(cls, credential: Credential) -> "ListingScope":
        if credential.is_company_token:
            return cls(
                path=f"/contacts/business/{credential.company_id}",
                params={},
                business_wide=True,
            )
        return cls(
            path="/contacts/",
            params={"locationId": credential.location_id},
            business_wide=False,
        )


class AuthenticatedGateway:
    """
    Authenticated access to the HighLevel API.

    Operates against exactly one active credential: whichever the store
    reports as most recently updated. Concurrent calls may each refresh;
    refreshes are not serialised.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth: OAuth2Client,
        http_client: httpx.AsyncClient,
        api_version: str = "2021-07-28",
    ):
        """
        Args:
            store: Credential store holding the active credential
            oauth: Used for the refresh-token grant
            http_client: Client whose base_url points at the HighLevel API
            api_version: Value of the `Version` header
        """
        self.store = store
        self.oauth = oauth
        self.http_client = http_client
        self.api_version = api_version
        self._listing_scope: ListingScope | None = None

    def _headers(self, credential: Credential) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.access_token}",
            "Version": self.api_version,
            "Accept": "application/json",
        }

    async def active_credential(self) -> Credential:
        credential = await self.store.get_latest_credential()
        if credential is None:
            raise UnauthenticatedError()
        return credential

    async def call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Issue an authenticated request.

        Returns the provider response, which may be non-2xx (including a
        second 401 after the single refresh).

        Raises:
            UnauthenticatedError: no credential is stored
            ReauthorizationRequiredError: the refresh grant failed
            UpstreamError: the API could not be reached (retryable)
        """
        machine = CallStateMachine()

        credential = await self.store.get_latest_credential()
        if credential is None:
            machine.fire(GatewayEvent.CREDENTIAL_MISSING)
            raise UnauthenticatedError()
        machine.fire(GatewayEvent.CREDENTIAL_LOADED)

        while True:
            try:
                response = await self.http_client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers=self._headers(credential),
                )
            except httpx.HTTPError as e:
                logger.warning("HighLevel API unreachable", method=method, path=path, error=str(e))
                raise UpstreamError(
                    message="Could not reach the HighLevel API. Please try again.",
                    meta={"method": method, "path": path},
                    retryable=True,
                ) from e

            if response.status_code != 401 or not machine.can_fire(GatewayEvent.UNAUTHORIZED):
                if response.status_code == 401:
                    logger.warning("Request still unauthorized after refresh", path=path)
                return response

            machine.fire(GatewayEvent.UNAUTHORIZED)
            logger.info("Access token rejected, refreshing", path=path, location_id=credential.location_id)

            try:
                credential = await self._refresh(credential)
            except ReauthorizationRequiredError:
                machine.fire(GatewayEvent.REFRESH_FAILED)
                raise
            machine.fire(GatewayEvent.REFRESH_SUCCEEDED)

    async def _refresh(self, credential: Credential) -> Credential:
        token_data = await self.oauth.refresh_tokens(credential.refresh_token)
        refreshed = credential.with_refreshed_tokens(token_data)
        await self.store.upsert_credential(refreshed)
        logger.info(
            "Credential refreshed",
            location_id=refreshed.location_id,
            expires_at=refreshed.expires_at,
        )
        return refreshed

    async def listing_scope(self) -> ListingScope:
        """Resolve (once) whether contacts are listed business-wide or per location."""
        if self._listing_scope is None:
            credential = await self.active_credential()
            self._listing_scope = ListingScope.for_credential(credential)
            logger.info(
                "Resolved contact listing scope",
                path=self._listing_scope.path,
                business_wide=self._listing_scope.business_wide,
            )
        return self._listing_scope

    def invalidate_scope(self) -> None:
        self._listing_scope = None
