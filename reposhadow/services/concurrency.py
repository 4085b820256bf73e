"""Stage runners built on asyncio task groups and bounded queues."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine, Iterable

T = TypeVar("T")

_DONE = object()


def _first_leaf(group: BaseExceptionGroup[Any]) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc


async def run_stages(*stages: Coroutine[Any, Any, Any]) -> list[Any]:
    """Run *stages* concurrently and return their results in order.

    The first failing stage cancels the others; its exception is re-raised
    as is rather than wrapped in an ``ExceptionGroup``.
    """
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(stage) for stage in stages]
    except BaseExceptionGroup as eg:
        raise _first_leaf(eg) from None
    return [task.result() for task in tasks]


async def run_pipeline(
    items: Iterable[T] | AsyncIterator[T],
    consume: Callable[[T], Awaitable[None]],
    *,
    capacity: int,
    workers: int = 1,
) -> None:
    """Feed *items* through a bounded queue to *workers* consumers.

    The producer blocks once *capacity* items are waiting.  A failure in the
    producer or in any consumer cancels the whole pipeline at its next queue
    handoff and is re-raised.
    """
    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)
    workers = max(workers, 1)

    async def produce() -> None:
        if hasattr(items, "__aiter__"):
            async for item in items:  # type: ignore[union-attr]
                await queue.put(item)
        else:
            for item in items:  # type: ignore[union-attr]
                await queue.put(item)
        for _ in range(workers):
            await queue.put(_DONE)

    async def work() -> None:
        while True:
            item = await queue.get()
            if item is _DONE:
                return
            await consume(item)

    await run_stages(produce(), *(work() for _ in range(workers)))
