"""Async utilities for running blocking I/O from the sync engine."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used for file reads, store queries and console prompts so every I/O
    boundary is a suspension point of the single engine task.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        entities = await run_sync(store.get_things_by_module, module_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def gather_chunked(
    items: Sequence[T],
    func: Callable[[T], Awaitable[R]],
    chunk_size: int,
) -> list[R]:
    """Apply an async function to items in fixed-size concurrent chunks.

    Each chunk is awaited with ``asyncio.gather`` before the next one
    starts, so at most *chunk_size* calls are in flight.  Results are
    returned in input order; exceptions propagate from the first failure.

    Args:
        items: Inputs to process.
        func: Coroutine function called once per item.
        chunk_size: Maximum number of concurrent calls (>= 1).

    Returns:
        List of results in the same order as *items*.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    results: list[R] = []
    for start in range(0, len(items), chunk_size):
        chunk = items[start : start + chunk_size]
        logger.debug(
            "Processing chunk %d-%d of %d",
            start,
            start + len(chunk),
            len(items),
        )
        results.extend(await asyncio.gather(*(func(item) for item in chunk)))
    return results
