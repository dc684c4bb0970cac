"""Application configuration using Pydantic Settings."""

import json
from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ghl_dashboard.kernel.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "test", "production"] = Field(default="development")

    # HighLevel OAuth app
    ghl_client_id: str | None = Field(default=None)
    ghl_client_secret: str | None = Field(default=None)
    ghl_redirect_uri: str | None = Field(default=None)

    # HighLevel endpoints
    ghl_api_base_url: str = Field(default="https://services.leadconnectorhq.com")
    ghl_authorization_url: str = Field(
        default="https://marketplace.leadconnectorhq.com/oauth/chooselocation"
    )
    ghl_token_url: str = Field(default="https://services.leadconnectorhq.com/oauth/token")
    ghl_api_version: str = Field(default="2021-07-28")
    # GHL_SCOPES is space-delimited, as in the authorization URL.
    ghl_scopes: Annotated[list[str], NoDecode] = Field(
        default=[
            "appointments.readonly",
            "calendars.readonly",
            "contacts.readonly",
            "opportunities.readonly",
            "users.readonly",
            "conversations.readonly",
            "locations/customFields.readonly",
        ]
    )

    # Credential persistence
    credential_store: Literal["memory", "postgres"] = Field(default="memory")
    database_url: str | None = Field(default=None)
    token_encryption_key: str | None = Field(default=None)

    # Sync engine
    sync_page_size: int = Field(default=100)
    sync_page_delay_seconds: float = Field(default=0.1)
    sync_max_page_retries: int = Field(default=3)
    sync_retry_base_seconds: float = Field(default=1.0)

    # Token exchange
    exchange_cache_ttl_seconds: int = Field(default=3600)

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=30.0)

    # API Settings
    cors_origins: list[str] = Field(default=["http://localhost:5173", "http://localhost:3000"])

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    @field_validator("ghl_scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        value = value.strip()
        if value.startswith("["):
            return json.loads(value)
        return value.split()

    def missing_oauth_env(self) -> list[str]:
        """Names of OAuth environment variables that are not set."""
        missing = []
        if not self.ghl_client_id:
            missing.append("GHL_CLIENT_ID")
        if not self.ghl_client_secret:
            missing.append("GHL_CLIENT_SECRET")
        if not self.ghl_redirect_uri:
            missing.append("GHL_REDIRECT_URI")
        return missing

    def require_oauth_settings(self) -> None:
        """Raise a ConfigurationError when the OAuth app is not configured."""
        missing = self.missing_oauth_env()
        if missing:
            raise ConfigurationError(
                message=f"HighLevel OAuth is not configured. Missing: {', '.join(missing)}",
                meta={"missing_env": missing},
            )

    def require_database(self) -> str:
        """Return the database URL or fail when the postgres store is selected without one."""
        if not self.database_url:
            raise ConfigurationError(
                message="CREDENTIAL_STORE=postgres requires DATABASE_URL",
                meta={"missing_env": ["DATABASE_URL"]},
            )
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
