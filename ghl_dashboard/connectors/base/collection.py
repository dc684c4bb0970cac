"""
Paginated Collection Abstract Class

The interface the sync engine drives: one bootstrap call, then cursor-ordered
page fetches, plus single-record fetches for deep sync.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from ghl_dashboard.connectors.base.records import Record, RecordPage
from ghl_dashboard.connectors.cursors import SyncCursor


class CollectionBootstrap(BaseModel):
    """Aggregate metadata fetched before the first page."""

    # Expected record count; 0 when the provider does not report one
    total: int = 0

    # Auxiliary reference data, e.g. custom field definitions
    reference: dict[str, Any] = Field(default_factory=dict)


class PaginatedCollection(ABC):
    """
    A remote collection read through cursor pagination.

    Example usage:
        collection = ContactCollection(client)

        bootstrap = await collection.bootstrap()
        page = await collection.fetch_page(None, limit=100)
        while page.next_cursor:
            page = await collection.fetch_page(page.next_cursor, limit=100)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Collection identifier used in logs and events, e.g. "contacts"."""
        pass

    @abstractmethod
    async def bootstrap(self) -> CollectionBootstrap:
        """Fetch the expected total and any reference data."""
        pass

    @abstractmethod
    async def fetch_page(self, cursor: SyncCursor | None, limit: int) -> RecordPage:
        """
        Fetch the page starting after `cursor` (None for the first page).

        Raises on failure; the engine decides whether to retry.
        """
        pass

    @abstractmethod
    async def fetch_record(self, record_id: str) -> Record | None:
        """Fetch one record's full detail, or None if it no longer exists."""
        pass
