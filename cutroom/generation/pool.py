"""Bounded-parallelism map used by every batch operation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Settled(Generic[R]):
    """Outcome of one work item: a value or the exception it raised."""

    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def coerce_limit(limit: int | float | None, item_count: int) -> int:
    """Concurrency limit as an int in ``[1, item_count]``."""
    try:
        value = int(limit or 0)
    except (TypeError, ValueError, OverflowError):
        value = 0
    return max(1, min(value, max(item_count, 1)))


async def map_with_concurrency(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[Settled[R]]:
    """Run ``worker(item, index)`` over ``items`` with at most ``limit`` active.

    Results come back in input order. A failing item is recorded in its
    ``Settled`` slot and does not stop the others. Cancelling the caller
    cancels every worker.
    """
    if not items:
        return []

    results: list[Settled[R] | None] = [None] * len(items)
    next_index = 0

    async def run_worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            index = next_index
            next_index += 1
            try:
                results[index] = Settled(value=await worker(items[index], index))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                results[index] = Settled(error=exc)

    workers = [asyncio.create_task(run_worker()) for _ in range(coerce_limit(limit, len(items)))]
    try:
        await asyncio.gather(*workers)
    except asyncio.CancelledError:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    return [result for result in results if result is not None]
