"""Base sync abstractions."""

from ghl_dashboard.connectors.base.collection import CollectionBootstrap, PaginatedCollection
from ghl_dashboard.connectors.base.records import Record, RecordPage, Snapshot
from ghl_dashboard.connectors.base.state import SyncProgress, SyncResult, SyncState, SyncStatus

__all__ = [
    "CollectionBootstrap",
    "PaginatedCollection",
    "Record",
    "RecordPage",
    "Snapshot",
    "SyncProgress",
    "SyncResult",
    "SyncState",
    "SyncStatus",
]
