from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar


DEFAULT_CONCURRENCY = 3

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[Optional[R]]],
) -> List[R]:
    """Process every item exactly once with at most ``concurrency`` in flight.

    ``min(concurrency, len(items))`` workers share one cursor; each claims the
    next unclaimed index and awaits ``worker`` on it until the cursor is
    exhausted. Results are stored by index and ``None`` results are dropped.
    The claim is a plain read-increment with no ``await`` in between, so it
    is atomic on the event loop.

    If ``worker`` raises, the remaining workers are cancelled and the
    exception propagates.
    """
    n = len(items)
    if n == 0:
        return []
    slots: List[Optional[R]] = [None] * n
    cursor = 0

    async def runner() -> None:
        nonlocal cursor
        while cursor < n:
            index = cursor
            cursor += 1
            slots[index] = await worker(items[index])

    tasks = [asyncio.create_task(runner()) for _ in range(max(1, min(int(concurrency or 1), n)))]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return [r for r in slots if r is not None]
