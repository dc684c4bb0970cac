"""
Test Configuration and Fixtures

Shared fixtures: settings, credential stores, a fake HighLevel behind
httpx.MockTransport, and an ASGI client for the FastAPI app.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("CREDENTIAL_STORE", "memory")
os.environ.setdefault("GHL_CLIENT_ID", "test-client-id")
os.environ.setdefault("GHL_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GHL_REDIRECT_URI", "http://localhost:5173/oauth/callback")

from ghl_dashboard.config import Settings  # noqa: E402
from ghl_dashboard.connectors.auth.token_store import Credential, InMemoryCredentialStore  # noqa: E402
from tests.support.highlevel import FakeHighLevel  # noqa: E402
from tests.support.stores import CountingCredentialStore  # noqa: E402


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "api: API endpoint tests")


def pytest_collection_modifyitems(config, items):
    """
    Auto-assign tier markers:
    - tests/api/** => api
    - everything else => unit
    """
    for item in items:
        path = str(getattr(item, "fspath", ""))
        if item.get_closest_marker("api") or item.get_closest_marker("unit"):
            continue
        if "/tests/api/" in path:
            item.add_marker(pytest.mark.api)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# SETTINGS & CREDENTIALS
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with OAuth configured and no sync delays."""
    return Settings(
        _env_file=None,
        environment="test",
        ghl_client_id="test-client-id",
        ghl_client_secret="test-client-secret",
        ghl_redirect_uri="http://localhost:5173/oauth/callback",
        credential_store="memory",
        sync_page_delay_seconds=0.0,
        sync_retry_base_seconds=0.0,
    )


@pytest.fixture
def credential_store() -> CountingCredentialStore:
    return CountingCredentialStore()


@pytest.fixture
def location_credential() -> Credential:
    return Credential(
        location_id="loc-1",
        access_token="access-1",
        refresh_token="refresh-1",
        user_type="Location",
        company_id="comp-1",
        expires_in=86399,
        scope="contacts.readonly",
    )


@pytest_asyncio.fixture
async def connected_store(credential_store, location_credential) -> InMemoryCredentialStore:
    await credential_store.upsert_credential(location_credential)
    return credential_store


# =============================================================================
# FAKE HIGHLEVEL
# =============================================================================


@pytest.fixture
def fake_highlevel() -> FakeHighLevel:
    return FakeHighLevel()


# =============================================================================
# APP FIXTURES
# =============================================================================


@pytest_asyncio.fixture
async def services(settings, credential_store, fake_highlevel):
    from ghl_dashboard.api.deps import DashboardServices

    token_client = fake_highlevel.token_client()
    services = DashboardServices(
        settings,
        store=credential_store,
        http_client=fake_highlevel.api_client(),
        token_http_client=token_client,
    )
    yield services
    await services.aclose()
    await token_client.aclose()


@pytest.fixture
def app(services):
    """FastAPI app wired to the test services."""
    from ghl_dashboard.api.deps import get_services
    from ghl_dashboard.api.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_services] = lambda: services
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the ASGI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
