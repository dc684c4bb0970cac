"""
Sync Event Broadcasting

In-process pub/sub for real-time sync status updates.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime

import structlog
from pydantic import BaseModel

from ghl_dashboard.connectors.base.state import SyncState
from ghl_dashboard.kernel.time import utc_now

logger = structlog.get_logger()


class SyncEvent(BaseModel):
    """Sync status event."""

    event_type: str  # "started", "progress", "completed", "partial", "failed", "cancelled"
    collection: str = "contacts"
    records_synced: int = 0
    total_records: int | None = None
    progress: float | None = None  # 0.0 to 1.0
    status: str = "syncing"
    error: str | None = None
    timestamp: datetime | None = None

    def model_post_init(self, __context):
        if self.timestamp is None:
            self.timestamp = utc_now()

    @classmethod
    def from_state(cls, event_type: str, state: SyncState, collection: str = "contacts") -> "SyncEvent":
        progress = state.progress
        return cls(
            event_type=event_type,
            collection=collection,
            records_synced=progress.current,
            total_records=progress.total if progress.total_known else None,
            progress=progress.fraction,
            status=state.status.value,
            error=state.error_message,
        )


class SyncEventBroadcaster:
    """Fans sync events out to every current subscriber."""

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue[SyncEvent]] = set()
        self._listeners: list[Callable[[SyncEvent], None]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_listener(self, listener: Callable[[SyncEvent], None]) -> None:
        """Register a callback invoked synchronously for every event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[SyncEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: SyncEvent) -> None:
        """Publish a sync event. Slow subscribers lose their oldest events."""
        for listener in list(self._listeners):
            listener(event)
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                logger.warning("Sync event subscriber is lagging, dropped oldest event")
            queue.put_nowait(event)
        logger.debug(
            "Published sync event",
            event_type=event.event_type,
            records_synced=event.records_synced,
            subscribers=len(self._subscribers),
        )

    def open_queue(self) -> "asyncio.Queue[SyncEvent]":
        """Register a queue that receives every event published from now on."""
        queue: asyncio.Queue[SyncEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        logger.info("Subscribed to sync events", subscribers=len(self._subscribers))
        return queue

    def close_queue(self, queue: "asyncio.Queue[SyncEvent]") -> None:
        self._subscribers.discard(queue)

    async def subscribe(self) -> AsyncIterator[SyncEvent]:
        """Yield events published from now on until the consumer stops iterating."""
        queue = self.open_queue()
        try:
            while True:
                yield await queue.get()
        finally:
            self.close_queue(queue)
