"""Async bridges for the blocking store and HTTP calls of a sync.

Stores and the GitHub client are synchronous.  The engine runs them in
worker threads so local scanning and remote listing can overlap, and
bounds content transfers with a shared semaphore.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable, Sequence
from typing import Any, TypeVar

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)

# Shared by every sync in the process; set once at startup
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 5) -> None:
    """Bound concurrent content transfers to *max_parallel*."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info("Transfer semaphore initialized: max_parallel=%d", max_parallel)


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run blocking *func* in a worker thread, without the semaphore.

    Example:
        snapshot = await run_sync(local_store.read_snapshot)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Like ``run_sync`` but waits for a semaphore slot first.

    Unbounded when ``init_semaphore`` has not been called.
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T]:
    """Await *coros* concurrently and return their results in order.

    The first exception propagates.  Each coroutine is expected to use
    ``run_sync_limited`` so the semaphore bounds the fan-out.
    """
    return list(await asyncio.gather(*coros))


async def map_limited(func: Callable[[T], R], items: Iterable[T]) -> list[R]:
    """Apply blocking *func* to every item, bounded by the semaphore.

    Args:
        func: Synchronous single-argument function.
        items: Inputs, results keep their order.

    Returns:
        ``[func(item) for item in items]`` computed in worker threads.
    """
    return await gather_limited([run_sync_limited(func, item) for item in items])
