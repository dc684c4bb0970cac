"""
OAuth2 Client

Handles the HighLevel authorization-code and refresh-token grants.
"""

from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from pydantic import BaseModel, Field

from ghl_dashboard.config import Settings
from ghl_dashboard.kernel.errors import (
    InvalidGrantError,
    MalformedProviderResponseError,
    ReauthorizationRequiredError,
    UpstreamError,
)

logger = structlog.get_logger()


class OAuth2ProviderConfig(BaseModel):
    """Configuration for the HighLevel OAuth app."""

    client_id: str
    client_secret: str
    redirect_uri: str

    # URLs
    authorization_url: str = "https://marketplace.leadconnectorhq.com/oauth/chooselocation"
    token_url: str = "https://services.leadconnectorhq.com/oauth/token"

    # Scopes
    default_scopes: list[str] = Field(default_factory=list)

    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings, require: bool = True) -> "OAuth2ProviderConfig":
        """
        Args:
            settings: Application settings
            require: Raise ConfigurationError when client id/secret/redirect URI are missing
        """
        if require:
            settings.require_oauth_settings()
        return cls(
            client_id=settings.ghl_client_id or "",
            client_secret=settings.ghl_client_secret or "",
            redirect_uri=settings.ghl_redirect_uri or "",
            authorization_url=settings.ghl_authorization_url,
            token_url=settings.ghl_token_url,
            default_scopes=list(settings.ghl_scopes),
            timeout_seconds=settings.http_timeout_seconds,
        )


REQUIRED_EXCHANGE_FIELDS = ("access_token", "refresh_token", "locationId")


class OAuth2Client:
    """
    OAuth2 grants against the HighLevel token endpoint.

    Example usage:
        client = OAuth2Client(OAuth2ProviderConfig.from_settings(get_settings()))

        url = client.get_authorization_url()
        token_data = await client.exchange_code("authorization_code")
        token_data = await client.refresh_tokens(credential.refresh_token)

    Both grants return the raw provider token payload; persisting it is the
    caller's job.
    """

    def __init__(
        self,
        config: OAuth2ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            config: OAuth app configuration
            http_client: Shared client; a short-lived one is opened per call when omitted
        """
        self.config = config
        self._http_client = http_client

    def get_authorization_url(
        self,
        scopes: list[str] | None = None,
        state: str | None = None,
    ) -> str:
        """
        Generate the provider authorization URL the browser is sent to.

        Args:
            scopes: Override default scopes
            state: Optional CSRF state parameter
        """
        params = {
            "response_type": "code",
            "redirect_uri": self.config.redirect_uri,
            "client_id": self.config.client_id,
        }

        scope_list = scopes or self.config.default_scopes
        if scope_list:
            params["scope"] = " ".join(scope_list)
        if state:
            params["state"] = state

        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Exchange an authorization code for a token set.

        Raises:
            InvalidGrantError: provider rejected the code (reused, expired, redirect mismatch)
            UpstreamError: network failure or provider-side error
            MalformedProviderResponseError: success status with an unusable body
        """
        data = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }

        response = await self._post_token(data, grant="authorization_code")

        if response.status_code >= 500:
            raise UpstreamError(
                message="HighLevel token endpoint is unavailable. Please try again.",
                meta={"provider_status": response.status_code},
            )
        if not response.is_success:
            body = self._safe_json(response)
            description = None
            if isinstance(body, dict):
                description = body.get("error_description") or body.get("message")
            logger.warning(
                "Authorization code rejected",
                status_code=response.status_code,
                error=body.get("error") if isinstance(body, dict) else None,
            )
            raise InvalidGrantError(
                meta={
                    "provider_status": response.status_code,
                    "provider_error": description or (body.get("error") if isinstance(body, dict) else None),
                },
            )

        token_data = self._safe_json(response)
        if not isinstance(token_data, dict):
            raise MalformedProviderResponseError(
                message="HighLevel returned a token response that is not valid JSON",
            )
        missing = [field for field in REQUIRED_EXCHANGE_FIELDS if not token_data.get(field)]
        if missing:
            raise MalformedProviderResponseError(
                message="HighLevel token response is missing required fields",
                meta={"missing_fields": missing},
            )
        return token_data

    async def refresh_tokens(self, refresh_token: str) -> dict[str, Any]:
        """
        Redeem a refresh token for a new token set.

        Any failure means the stored credential can no longer be used.

        Raises:
            ReauthorizationRequiredError
        """
        data = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "refresh_token": refresh_token,
        }

        try:
            response = await self._post_token(data, grant="refresh_token")
        except UpstreamError as e:
            raise ReauthorizationRequiredError(meta={"reason": "network"}) from e

        token_data = self._safe_json(response)
        if not response.is_success or not isinstance(token_data, dict) or not token_data.get("access_token"):
            logger.warning("Token refresh failed", status_code=response.status_code)
            raise ReauthorizationRequiredError(meta={"provider_status": response.status_code})

        logger.info("Tokens refreshed", expires_in=token_data.get("expires_in"))
        return token_data

    async def _post_token(self, data: dict[str, str], grant: str) -> httpx.Response:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            if self._http_client is not None:
                return await self._http_client.post(self.config.token_url, data=data, headers=headers)

            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                return await client.post(self.config.token_url, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable", grant=grant, error=str(e))
            raise UpstreamError(
                message="Could not reach the HighLevel token endpoint. Please try again.",
                meta={"grant": grant},
            ) from e

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
