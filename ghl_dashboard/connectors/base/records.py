"""
Record Types

Records are plain mappings with a string `id`; everything else is provider
data carried as-is.
"""

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ghl_dashboard.connectors.cursors import SyncCursor

logger = structlog.get_logger()

Record = dict[str, Any]


def record_id(record: Mapping[str, Any]) -> str | None:
    value = record.get("id")
    if value is None:
        return None
    value = str(value)
    return value or None


class RecordPage(BaseModel):
    """One page of a paginated collection."""

    records: list[dict[str, Any]] = Field(default_factory=list)

    # Cursor for the page after this one; None when the collection is exhausted
    next_cursor: SyncCursor | None = None

    # Total reported by the provider alongside this page, if any
    total: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.records


class Snapshot:
    """
    In-memory mirror of a remote collection, keyed by record id.

    Only ever upserted during a pass (last write wins); `reset()` discards it
    at the start of the next full pass. Readers may look at it at any time.
    """

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}

    def upsert(self, record: Mapping[str, Any]) -> bool:
        """Insert or replace one record. Returns False when it has no id."""
        key = record_id(record)
        if key is None:
            logger.warning("Dropping record without id", fields=sorted(record.keys())[:10])
            return False
        self._records[key] = dict(record)
        return True

    def merge(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Upsert a batch. Returns how many records were applied."""
        return sum(1 for record in records if self.upsert(record))

    def get(self, key: str) -> Record | None:
        record = self._records.get(key)
        return dict(record) if record is not None else None

    def reset(self) -> None:
        self._records = {}

    def records(self) -> list[Record]:
        return list(self._records.values())

    def ids(self) -> set[str]:
        return set(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._records.values()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self._records == other._records
