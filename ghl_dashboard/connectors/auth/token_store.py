"""
Credential Storage

Stores the single active HighLevel OAuth credential.

The dashboard operates against exactly one active credential: the most
recently updated record wins. Connecting several locations at once is not
supported; each write replaces the whole record keyed by location id.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

import structlog
from cryptography.fernet import Fernet
from pydantic import BaseModel, Field, field_validator

from ghl_dashboard.kernel.time import coerce_utc, utc_now

logger = structlog.get_logger()


class Credential(BaseModel):
    """A stored OAuth token set for one connected location."""

    location_id: str
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    user_type: str | None = None
    company_id: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("updated_at")
    @classmethod
    def _updated_at_utc(cls, value: datetime) -> datetime:
        return coerce_utc(value)

    @classmethod
    def from_token_response(cls, token_data: dict[str, Any]) -> "Credential":
        """Mint a credential from an authorization-code grant response."""
        return cls(
            location_id=token_data["locationId"],
            access_token=token_data["access_token"],
            refresh_token=token_data["refresh_token"],
            token_type=token_data.get("token_type") or "Bearer",
            user_type=token_data.get("userType"),
            company_id=token_data.get("companyId"),
            expires_in=token_data.get("expires_in"),
            scope=token_data.get("scope"),
        )

    @property
    def expires_at(self) -> datetime | None:
        if self.expires_in is None:
            return None
        return self.updated_at + timedelta(seconds=self.expires_in)

    @property
    def is_expired(self) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return utc_now() >= expires_at

    @property
    def is_company_token(self) -> bool:
        return (self.user_type or "").lower() == "company" and bool(self.company_id)

    def with_refreshed_tokens(self, token_data: dict[str, Any]) -> "Credential":
        """
        Build the replacement record after a refresh grant.

        Tenant metadata the refresh response omits is carried over.
        """
        return Credential(
            location_id=token_data.get("locationId") or self.location_id,
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or self.refresh_token,
            token_type=token_data.get("token_type") or self.token_type,
            user_type=token_data.get("userType") or self.user_type,
            company_id=token_data.get("companyId") or self.company_id,
            expires_in=token_data.get("expires_in", self.expires_in),
            scope=token_data.get("scope") or self.scope,
            updated_at=utc_now(),
        )

    def to_record(self) -> dict[str, Any]:
        """Row shape of the persisted credential table."""
        return {
            "location_id": self.location_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user_type": self.user_type,
            "company_id": self.company_id,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "updated_at": self.updated_at,
        }


class CredentialStore(ABC):
    """
    Abstract base class for credential storage.

    Implementations must replace records whole, keyed by location id.
    """

    @abstractmethod
    async def get_latest_credential(self) -> Credential | None:
        """Return the most recently updated credential, or None when disconnected."""
        pass

    @abstractmethod
    async def upsert_credential(self, credential: Credential) -> None:
        """Insert or replace the credential for its location."""
        pass

    @abstractmethod
    async def delete_credential(self, location_id: str) -> bool:
        """Remove a location's credential. Returns False if it did not exist."""
        pass


class InMemoryCredentialStore(CredentialStore):
    """
    In-memory credential storage for development/testing.

    Tokens are encrypted in memory but not persisted.
    """

    def __init__(self, encryption_key: bytes | None = None):
        """
        Args:
            encryption_key: Fernet key. If not provided, a new key is generated.
        """
        if encryption_key:
            self._fernet = Fernet(encryption_key)
        else:
            self._fernet = Fernet(Fernet.generate_key())

        self._records: dict[str, dict[str, Any]] = {}

    def _encrypt(self, data: str) -> bytes:
        return self._fernet.encrypt(data.encode())

    def _decrypt(self, data: bytes) -> str:
        return self._fernet.decrypt(data).decode()

    async def get_latest_credential(self) -> Credential | None:
        if not self._records:
            return None

        stored = max(self._records.values(), key=lambda r: r["updated_at"])
        return Credential(
            **{
                **stored,
                "access_token": self._decrypt(stored["access_token"]),
                "refresh_token": self._decrypt(stored["refresh_token"]),
            }
        )

    async def upsert_credential(self, credential: Credential) -> None:
        record = credential.model_dump()
        record["access_token"] = self._encrypt(credential.access_token)
        record["refresh_token"] = self._encrypt(credential.refresh_token)
        self._records[credential.location_id] = record

        logger.debug(
            "Stored credential",
            location_id=credential.location_id,
            expires_at=credential.expires_at,
        )

    async def delete_credential(self, location_id: str) -> bool:
        if location_id in self._records:
            del self._records[location_id]
            logger.debug("Deleted credential", location_id=location_id)
            return True
        return False


class PostgresCredentialStore(CredentialStore):
    """
    PostgreSQL-backed credential storage.

    Reads and writes the `ghl_tokens` table (unique on location_id).
    """

    async def get_latest_credential(self) -> Credential | None:
        from sqlalchemy import text

        from ghl_dashboard.db.client import get_db_session

        async with get_db_session() as session:
            result = await session.execute(
                text("""
                    SELECT location_id, access_token, refresh_token, user_type,
                           company_id, expires_in, scope, updated_at
                    FROM ghl_tokens
                    ORDER BY updated_at DESC
                    LIMIT 1
                """)
            )
            row = result.mappings().first()

        if not row:
            return None

        return Credential(
            location_id=row["location_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            user_type=row["user_type"],
            company_id=row["company_id"],
            expires_in=row["expires_in"],
            scope=row["scope"],
            updated_at=row["updated_at"],
        )

    async def upsert_credential(self, credential: Credential) -> None:
        from sqlalchemy import text

        from ghl_dashboard.db.client import get_db_session

        async with get_db_session() as session:
            await session.execute(
                text("""
                    INSERT INTO ghl_tokens (
                        location_id, access_token, refresh_token, user_type,
                        company_id, expires_in, scope, updated_at
                    ) VALUES (
                        :location_id, :access_token, :refresh_token, :user_type,
                        :company_id, :expires_in, :scope, :updated_at
                    )
                    ON CONFLICT (location_id) DO UPDATE SET
                        access_token = EXCLUDED.access_token,
                        refresh_token = EXCLUDED.refresh_token,
                        user_type = EXCLUDED.user_type,
                        company_id = EXCLUDED.company_id,
                        expires_in = EXCLUDED.expires_in,
                        scope = EXCLUDED.scope,
                        updated_at = EXCLUDED.updated_at
                """),
                credential.to_record(),
            )

        logger.debug("Stored credential in PostgreSQL", location_id=credential.location_id)

    async def delete_credential(self, location_id: str) -> bool:
        from sqlalchemy import text

        from ghl_dashboard.db.client import get_db_session

        async with get_db_session() as session:
            result = await session.execute(
                text("DELETE FROM ghl_tokens WHERE location_id = :location_id"),
                {"location_id": location_id},
            )

        return result.rowcount > 0
