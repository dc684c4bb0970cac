"""Unit tests for the one-shot authorization code exchange."""

import httpx
import pytest

from ghl_dashboard.connectors.auth.exchange import (
    ExchangeIdempotencyCache,
    ExchangeStatus,
    TokenExchange,
)
from ghl_dashboard.connectors.auth.oauth2 import OAuth2Client, OAuth2ProviderConfig
from ghl_dashboard.connectors.auth.token_store import InMemoryCredentialStore
from ghl_dashboard.kernel.errors import (
    CredentialPersistenceError,
    InvalidGrantError,
    MalformedProviderResponseError,
    UpstreamError,
    ValidationError,
)

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


class FailingStore(InMemoryCredentialStore):
    async def upsert_credential(self, credential):
        raise RuntimeError("database unavailable")


@pytest.fixture
def cache():
    return ExchangeIdempotencyCache(ttl_seconds=60)


@pytest.fixture
def token_client(fake_highlevel):
    return fake_highlevel.token_client()


@pytest.fixture
def oauth(settings, token_client):
    return OAuth2Client(OAuth2ProviderConfig.from_settings(settings), http_client=token_client)


@pytest.fixture
def exchange(oauth, credential_store, cache):
    return TokenExchange(oauth=oauth, store=credential_store, cache=cache)


async def test_exchange_persists_credential(exchange, credential_store, fake_highlevel):
    result = await exchange.exchange("code-1")

    assert result.status == ExchangeStatus.CONNECTED
    assert result.connected
    assert result.location_id == "loc-1"

    stored = await credential_store.get_latest_credential()
    assert stored is not None
    assert stored.location_id == "loc-1"
    assert stored.access_token == "access-1"
    assert stored.refresh_token == "refresh-1"
    assert stored.user_type == "Location"
    assert stored.company_id == "comp-1"
    assert stored.expires_in == 86399
    assert len(fake_highlevel.grants("authorization_code")) == 1


async def test_same_code_twice_makes_one_network_call(exchange, credential_store, fake_highlevel):
    first = await exchange.exchange("code-1")
    second = await exchange.exchange("code-1")

    assert first.status == ExchangeStatus.CONNECTED
    assert second.status == ExchangeStatus.DUPLICATE
    assert second.location_id is None
    assert len(fake_highlevel.grants("authorization_code")) == 1
    assert credential_store.write_count == 1


async def test_different_codes_are_each_exchanged(exchange, fake_highlevel):
    await exchange.exchange("code-1")
    await exchange.exchange("code-2")

    assert len(fake_highlevel.grants("authorization_code")) == 2


@pytest.mark.parametrize("code", ["", "   "])
async def test_empty_code_is_rejected_without_network(exchange, fake_highlevel, cache, code):
    with pytest.raises(ValidationError):
        await exchange.exchange(code)

    assert fake_highlevel.token_requests == []
    assert len(cache) == 0


async def test_rejected_code_stays_attempted(exchange, fake_highlevel, credential_store, cache):
    fake_highlevel.exchange_status = 400

    with pytest.raises(InvalidGrantError):
        await exchange.exchange("expired-code")

    assert "expired-code" in cache
    result = await exchange.exchange("expired-code")
    assert result.status == ExchangeStatus.DUPLICATE
    assert len(fake_highlevel.grants("authorization_code")) == 1
    assert await credential_store.get_latest_credential() is None


async def test_provider_outage_is_not_invalid_grant(exchange, fake_highlevel):
    fake_highlevel.exchange_status = 502

    with pytest.raises(UpstreamError) as exc_info:
        await exchange.exchange("code-1")

    assert exc_info.value.code == "upstream.error"


async def test_malformed_response(exchange, fake_highlevel, credential_store):
    fake_highlevel.exchange_payload = {"access_token": "a"}

    with pytest.raises(MalformedProviderResponseError):
        await exchange.exchange("code-1")

    assert await credential_store.get_latest_credential() is None


async def test_persistence_failure(oauth, cache):
    exchange = TokenExchange(oauth=oauth, store=FailingStore(), cache=cache)

    with pytest.raises(CredentialPersistenceError) as exc_info:
        await exchange.exchange("code-1")

    assert exc_info.value.code == "credentials.persistence_failed"
    assert exc_info.value.meta == {"location_id": "loc-1"}
    assert "code-1" in cache


async def test_on_connected_callback(oauth, credential_store, cache):
    connected = []
    exchange = TokenExchange(oauth=oauth, store=credential_store, cache=cache, on_connected=connected.append)

    await exchange.exchange("code-1")
    await exchange.exchange("code-1")

    assert [c.location_id for c in connected] == ["loc-1"]


class TestExchangeIdempotencyCache:
    async def test_mark_and_contains(self):
        cache = ExchangeIdempotencyCache()

        assert cache.mark("a") is True
        assert cache.mark("a") is False
        assert "a" in cache
        assert "b" not in cache

    async def test_entries_expire_after_ttl(self):
        now = [100.0]
        cache = ExchangeIdempotencyCache(ttl_seconds=10, clock=lambda: now[0])

        cache.mark("a")
        now[0] = 109.0
        assert "a" in cache

        now[0] = 110.0
        assert "a" not in cache
        assert cache.mark("a") is True

    async def test_clear(self):
        cache = ExchangeIdempotencyCache()
        cache.mark("a")
        cache.mark("b")

        cache.clear()

        assert len(cache) == 0
