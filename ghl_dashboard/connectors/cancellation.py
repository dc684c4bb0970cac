"""
Cooperative cancellation for sync passes.

A token is passed into the pass and checked before every network call and at
every loop boundary. In-flight calls and sleeps are raced against it, so a
cancel takes effect at the next suspension point rather than after the
current request finishes.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class SyncCancelled(Exception):
    """Raised inside a pass once its token is cancelled. Never user-visible."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled()

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds, waking early (and raising) on cancellation."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise SyncCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        When the token wins, the in-flight work is cancelled and its result
        discarded.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        # Let the abandoned call unwind; its outcome is discarded.
        await asyncio.gather(task, return_exceptions=True)
        raise SyncCancelled()
