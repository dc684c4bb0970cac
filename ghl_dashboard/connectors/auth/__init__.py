"""
Authentication System

OAuth2 grants, credential storage, the one-shot code exchange and the
authenticated request gateway.
"""

from ghl_dashboard.connectors.auth.exchange import ExchangeIdempotencyCache, ExchangeResult, TokenExchange
from ghl_dashboard.connectors.auth.gateway import AuthenticatedGateway, GatewayState, ListingScope
from ghl_dashboard.connectors.auth.oauth2 import OAuth2Client, OAuth2ProviderConfig
from ghl_dashboard.connectors.auth.token_store import (
    Credential,
    CredentialStore,
    InMemoryCredentialStore,
    PostgresCredentialStore,
)

__all__ = [
    "AuthenticatedGateway",
    "Credential",
    "CredentialStore",
    "ExchangeIdempotencyCache",
    "ExchangeResult",
    "GatewayState",
    "InMemoryCredentialStore",
    "ListingScope",
    "OAuth2Client",
    "OAuth2ProviderConfig",
    "PostgresCredentialStore",
    "TokenExchange",
]
