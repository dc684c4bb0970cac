"""Unit tests for the authenticated request gateway."""

import pytest

from ghl_dashboard.connectors.auth.gateway import (
    TRANSITIONS,
    AuthenticatedGateway,
    CallStateMachine,
    GatewayEvent,
    GatewayState,
    IllegalTransitionError,
    ListingScope,
)
from ghl_dashboard.connectors.auth.oauth2 import OAuth2Client, OAuth2ProviderConfig
from ghl_dashboard.connectors.auth.token_store import Credential
from ghl_dashboard.connectors.http import is_retryable
from ghl_dashboard.kernel.errors import ReauthorizationRequiredError, UnauthenticatedError, UpstreamError

pytestmark = pytest.mark.unit


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def gateway(settings, credential_store, fake_highlevel):
    oauth = OAuth2Client(OAuth2ProviderConfig.from_settings(settings), http_client=fake_highlevel.token_client())
    return AuthenticatedGateway(
        store=credential_store,
        oauth=oauth,
        http_client=fake_highlevel.api_client(),
        api_version=settings.ghl_api_version,
    )


# =============================================================================
# State Machine Tests
# =============================================================================


class TestCallStateMachine:
    def test_no_edge_from_retrying_to_refreshing(self):
        assert (GatewayState.RETRYING, GatewayEvent.UNAUTHORIZED) not in TRANSITIONS
        assert all(target != GatewayState.REFRESHING or source == GatewayState.AUTHENTICATED
                   for (source, _), target in TRANSITIONS.items())

    def test_refresh_cycle(self):
        machine = CallStateMachine()

        machine.fire(GatewayEvent.CREDENTIAL_LOADED)
        machine.fire(GatewayEvent.UNAUTHORIZED)
        machine.fire(GatewayEvent.REFRESH_SUCCEEDED)

        assert machine.state == GatewayState.RETRYING
        assert machine.refresh_count == 1
        assert not machine.can_fire(GatewayEvent.UNAUTHORIZED)

    def test_illegal_transition_raises(self):
        machine = CallStateMachine()
        machine.fire(GatewayEvent.CREDENTIAL_LOADED)
        machine.fire(GatewayEvent.UNAUTHORIZED)
        machine.fire(GatewayEvent.REFRESH_SUCCEEDED)

        with pytest.raises(IllegalTransitionError):
            machine.fire(GatewayEvent.UNAUTHORIZED)

    def test_missing_credential_fails(self):
        machine = CallStateMachine()

        assert machine.fire(GatewayEvent.CREDENTIAL_MISSING) == GatewayState.FAILED


# =============================================================================
# Gateway Call Tests
# =============================================================================


@pytest.mark.asyncio
class TestGatewayCall:
    async def test_no_credential_fails_without_network(self, gateway, fake_highlevel):
        with pytest.raises(UnauthenticatedError) as exc_info:
            await gateway.call("GET", "/contacts/")

        assert exc_info.value.status_code == 401
        assert fake_highlevel.api_requests == []

    async def test_attaches_bearer_and_version(self, gateway, connected_store, fake_highlevel):
        response = await gateway.call("GET", "/contacts/", params={"locationId": "loc-1"})

        assert response.status_code == 200
        request = fake_highlevel.api_requests[0]
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.headers["Version"] == "2021-07-28"
        assert request.headers["Accept"] == "application/json"
        assert request.url.params["locationId"] == "loc-1"

    async def test_401_refreshes_once_and_retries(self, gateway, connected_store, fake_highlevel):
        fake_highlevel.valid_access_tokens = {"something-else"}

        response = await gateway.call("GET", "/contacts/")

        assert response.status_code == 200
        assert len(fake_highlevel.grants("refresh_token")) == 1
        assert len(fake_highlevel.api_requests) == 2
        assert fake_highlevel.api_requests[1].headers["Authorization"] == "Bearer access-2"
        assert connected_store.write_count == 2

        stored = await connected_store.get_latest_credential()
        assert stored.access_token == "access-2"
        assert stored.refresh_token == "refresh-2"
        # Tenant metadata the refresh response omits is preserved.
        assert stored.location_id == "loc-1"
        assert stored.user_type == "Location"
        assert stored.company_id == "comp-1"

    async def test_second_401_is_returned_without_second_refresh(self, gateway, connected_store, fake_highlevel):
        fake_highlevel.valid_access_tokens = set()
        fake_highlevel.refresh_issues_valid_token = False

        response = await gateway.call("GET", "/contacts/")

        assert response.status_code == 401
        assert len(fake_highlevel.grants("refresh_token")) == 1
        assert len(fake_highlevel.api_requests) == 2

    async def test_refresh_failure_requires_reauthorization(self, gateway, connected_store, fake_highlevel):
        fake_highlevel.valid_access_tokens = set()
        fake_highlevel.refresh_succeeds = False

        with pytest.raises(ReauthorizationRequiredError):
            await gateway.call("GET", "/contacts/")

        assert len(fake_highlevel.api_requests) == 1
        stored = await connected_store.get_latest_credential()
        assert stored.access_token == "access-1"

    async def test_non_401_errors_are_returned_as_is(self, gateway, connected_store, fake_highlevel):
        response = await gateway.call("GET", "/unknown")

        assert response.status_code == 404
        assert fake_highlevel.token_requests == []

    async def test_network_failure_is_retryable_upstream_error(self, gateway, connected_store, fake_highlevel):
        fake_highlevel.unreachable = True

        with pytest.raises(UpstreamError) as exc_info:
            await gateway.call("GET", "/contacts/")

        assert exc_info.value.code == "upstream.error"
        assert exc_info.value.status_code == 502
        assert exc_info.value.retryable
        assert is_retryable(exc_info.value)
        assert fake_highlevel.token_requests == []

    async def test_uses_most_recent_credential(self, gateway, connected_store, location_credential, fake_highlevel):
        newer = location_credential.model_copy(
            update={"location_id": "loc-2", "access_token": "access-9"}
        )
        newer.updated_at = location_credential.updated_at.replace(year=location_credential.updated_at.year + 1)
        await connected_store.upsert_credential(newer)
        fake_highlevel.valid_access_tokens = {"access-9"}

        response = await gateway.call("GET", "/contacts/")

        assert response.status_code == 200
        assert fake_highlevel.api_requests[0].headers["Authorization"] == "Bearer access-9"


# =============================================================================
# Listing Scope Tests
# =============================================================================


class TestListingScope:
    def test_location_token(self, location_credential):
        scope = ListingScope.for_credential(location_credential)

        assert scope.path == "/contacts/"
        assert scope.params == {"locationId": "loc-1"}
        assert scope.business_wide is False

    def test_company_token(self):
        credential = Credential(
            location_id="loc-1",
            access_token="a",
            refresh_token="r",
            user_type="Company",
            company_id="comp-1",
        )

        scope = ListingScope.for_credential(credential)

        assert scope.path == "/contacts/business/comp-1"
        assert scope.params == {}
        assert scope.business_wide is True

    def test_company_token_without_company_id_is_location_wide(self):
        credential = Credential(location_id="loc-1", access_token="a", refresh_token="r", user_type="Company")

        assert ListingScope.for_credential(credential).path == "/contacts/"

    @pytest.mark.asyncio
    async def test_resolved_once_until_invalidated(self, gateway, connected_store, location_credential):
        first = await gateway.listing_scope()

        company = location_credential.model_copy(update={"user_type": "Company"})
        company.updated_at = location_credential.updated_at.replace(year=location_credential.updated_at.year + 1)
        await connected_store.upsert_credential(company)

        assert await gateway.listing_scope() is first

        gateway.invalidate_scope()
        resolved = await gateway.listing_scope()
        assert resolved.path == "/contacts/business/comp-1"

    @pytest.mark.asyncio
    async def test_requires_credential(self, gateway):
        with pytest.raises(UnauthenticatedError):
            await gateway.listing_scope()
