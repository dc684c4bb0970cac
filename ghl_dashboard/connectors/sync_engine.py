"""
Pagination Sync Engine

Pulls a complete cursor-paginated collection into the in-memory Snapshot.

One pass at a time (single-flight). A pass bootstraps the expected total and
reference data, then walks pages strictly in cursor order:

    bootstrap -> page 1 -> (100 ms) -> page 2 -> ... -> empty page / no cursor

Each page is retried on transient failures with exponential backoff before
the pass gives up. A pass that gives up keeps everything merged so far and
reports `partial`. Cancellation is cooperative through a CancellationToken.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from ghl_dashboard.connectors.base.collection import CollectionBootstrap, PaginatedCollection
from ghl_dashboard.connectors.base.records import Record, RecordPage, Snapshot
from ghl_dashboard.connectors.base.state import SyncResult, SyncState, SyncStatus
from ghl_dashboard.connectors.cancellation import CancellationToken, SyncCancelled
from ghl_dashboard.connectors.cursors import SyncCursor
from ghl_dashboard.connectors.http import RetryPolicy, is_retryable
from ghl_dashboard.connectors.sync_events import SyncEvent, SyncEventBroadcaster

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 100
DEFAULT_PAGE_DELAY_SECONDS = 0.1


class PaginationSyncEngine:
    """
    Drives a PaginatedCollection into a Snapshot.

    Example usage:
        engine = PaginationSyncEngine(ContactCollection(client))

        result = await engine.run()          # None if a pass is already running
        task = engine.start()                # same, as a background task
        engine.cancel()
        record = await engine.deep_sync("contact-id")
    """

    def __init__(
        self,
        collection: PaginatedCollection,
        snapshot: Snapshot | None = None,
        broadcaster: SyncEventBroadcaster | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_delay: float = DEFAULT_PAGE_DELAY_SECONDS,
        retry_policy: RetryPolicy | None = None,
    ):
        self.collection = collection
        self.snapshot = snapshot if snapshot is not None else Snapshot()
        self.broadcaster = broadcaster or SyncEventBroadcaster()
        self.page_size = page_size
        self.page_delay = page_delay
        self.retry_policy = retry_policy or RetryPolicy()

        self.state = SyncState()
        self.reference: dict[str, Any] = {}

        self._lock = asyncio.Lock()
        self._token: CancellationToken | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked() or (self._task is not None and not self._task.done())

    def start(self, cancel_token: CancellationToken | None = None) -> asyncio.Task | None:
        """Schedule a pass in the background. Returns None if one is already active."""
        if self.is_running:
            logger.info("Sync already in progress, ignoring start", collection=self.collection.name)
            return None
        self._task = asyncio.create_task(self.run(cancel_token))
        return self._task

    def cancel(self) -> bool:
        """Signal the active pass to stop. Returns False when nothing is running."""
        if self._token is None:
            if self._task is not None and not self._task.done():
                self._task.cancel()
                return True
            return False
        self._token.cancel()
        logger.info("Sync cancellation requested", collection=self.collection.name)
        return True

    async def wait_idle(self) -> None:
        """Wait for the background pass, if any, to finish. Its outcome is already in `state`."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def run(self, cancel_token: CancellationToken | None = None) -> SyncResult | None:
        """
        Perform one full pass.

        Returns None without any network activity when a pass is already
        active. Otherwise returns the pass outcome; failures are reported in
        the result, not raised. Task cancellation is recorded and re-raised.
        """
        if self._lock.locked():
            logger.info("Sync already in progress, ignoring run", collection=self.collection.name)
            return None

        async with self._lock:
            token = cancel_token or CancellationToken()
            self._token = token
            try:
                return await self._run_pass(token)
            finally:
                self._token = None

    async def _run_pass(self, token: CancellationToken) -> SyncResult:
        state = self.state
        state.mark_started()
        self._publish("started")
        logger.info("Sync pass started", collection=self.collection.name)

        try:
            await self._bootstrap(token)
            await self._page_loop(token)
        except SyncCancelled:
            state.mark_cancelled()
            logger.info(
                "Sync pass cancelled",
                collection=self.collection.name,
                records=len(self.snapshot),
                pages=state.pages_fetched,
            )
        except asyncio.CancelledError:
            state.mark_cancelled()
            self._publish("cancelled")
            logger.info("Sync task cancelled", collection=self.collection.name, records=len(self.snapshot))
            raise
        except Exception as e:
            if is_retryable(e):
                state.mark_partial(str(e))
                logger.warning(
                    "Sync pass incomplete after retries",
                    collection=self.collection.name,
                    records=len(self.snapshot),
                    pages=state.pages_fetched,
                    error=str(e),
                )
            else:
                state.mark_failed(str(e))
                logger.error(
                    "Sync pass failed",
                    collection=self.collection.name,
                    records=len(self.snapshot),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        else:
            state.mark_completed()
            logger.info(
                "Sync pass completed",
                collection=self.collection.name,
                records=len(self.snapshot),
                pages=state.pages_fetched,
                total=state.progress.total,
            )

        self._publish(state.status.value)
        return SyncResult(
            status=state.status,
            records_synced=len(self.snapshot),
            pages_fetched=state.pages_fetched,
            progress=state.progress.model_copy(),
            error=state.error_message,
        )

    async def _bootstrap(self, token: CancellationToken) -> None:
        try:
            bootstrap = await self._with_retry(token, self.collection.bootstrap, step="bootstrap")
        except SyncCancelled:
            raise
        except Exception as e:
            if not is_retryable(e):
                raise
            logger.warning(
                "Bootstrap unavailable, continuing without expected total",
                collection=self.collection.name,
                error=str(e),
            )
            bootstrap = CollectionBootstrap()

        token.raise_if_cancelled()
        self.reference = dict(bootstrap.reference)
        self.state.progress.reset(bootstrap.total)
        self.snapshot.reset()
        self._publish("progress")

    async def _page_loop(self, token: CancellationToken) -> None:
        state = self.state
        cursor: SyncCursor | None = None

        while True:
            token.raise_if_cancelled()
            page: RecordPage = await self._with_retry(
                token,
                lambda: self.collection.fetch_page(cursor, self.page_size),
                step="page",
                page=state.pages_fetched + 1,
            )
            token.raise_if_cancelled()

            if page.is_empty:
                logger.debug("Empty page, collection exhausted", page=state.pages_fetched + 1)
                break

            if state.pages_fetched == 0:
                state.progress.correct_total(page.total)

            self.snapshot.merge(page.records)
            state.progress.advance(len(page.records))
            state.pages_fetched += 1
            self._publish("progress")

            next_cursor = page.next_cursor
            if next_cursor is None:
                break
            if next_cursor == cursor:
                logger.warning("Cursor did not advance, stopping", page=state.pages_fetched)
                break
            cursor = next_cursor

            await token.sleep(self.page_delay)

    async def _with_retry(
        self,
        token: CancellationToken,
        call: Callable[[], Awaitable[T]],
        **log_context: Any,
    ) -> T:
        """Run `call` under the token, retrying transient failures per the retry policy."""
        retry = 0
        while True:
            token.raise_if_cancelled()
            try:
                return await token.run(call())
            except SyncCancelled:
                raise
            except Exception as e:
                if not is_retryable(e) or retry >= self.retry_policy.max_retries:
                    raise
                retry += 1
                delay = self.retry_policy.delay_for(retry)
                logger.warning(
                    "Transient sync failure, retrying",
                    collection=self.collection.name,
                    retry=retry,
                    max_retries=self.retry_policy.max_retries,
                    delay=delay,
                    error=str(e),
                    **log_context,
                )
                await token.sleep(delay)

    async def deep_sync(self, record_id: str) -> Record | None:
        """
        Re-fetch one record's full detail and upsert it into the Snapshot.

        Runs outside the single-flight lock; upserts commute with a bulk pass.
        """
        record = await self.collection.fetch_record(record_id)
        if record is None:
            logger.info("Deep sync found no record", record_id=record_id)
            return None
        self.snapshot.upsert(record)
        logger.debug("Deep sync merged record", record_id=record_id)
        return record

    def _publish(self, event_type: str) -> None:
        self.broadcaster.publish(SyncEvent.from_state(event_type, self.state, self.collection.name))
