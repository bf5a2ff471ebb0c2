"""Cancellation tokens for provider calls.

A token can be cancelled from any thread or from the event loop. Awaitables
guarded by a token fail with ``GenerationCancelledError`` as soon as the
token fires, without waiting for the underlying network timeout.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, TypeVar

from cutroom.common.errors import GenerationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Thread-safe, loop-agnostic cancellation signal."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._waiters: set[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = set()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> bool:
        """Fire the token. Returns False if it was already cancelled."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            waiters = list(self._waiters)
            self._waiters.clear()

        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, future)
        return True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelledError()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        entry = (loop, future)
        with self._lock:
            if self._cancelled:
                return
            self._waiters.add(entry)
        try:
            await future
        finally:
            with self._lock:
                self._waiters.discard(entry)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first."""
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if not waiter.done():
            waiter.cancel()
            if not self.cancelled:
                return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise GenerationCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Interruptible sleep."""
        await self.guard(asyncio.sleep(seconds))


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


async def guarded(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await with optional cancellation."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)
