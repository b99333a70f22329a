"""Concurrency helpers.

``default_concurrency`` sizes worker pools, ``run_batches`` fans a coroutine
out over fixed-size batches under a semaphore, and ``run_coro_sync`` lets the
synchronous CLI drive coroutines.
"""

import asyncio
import os
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from kernel_memory.utils.logging_utils import get_logger

logger = get_logger()

T = TypeVar("T")
R = TypeVar("R")

MAX_DEFAULT_CONCURRENCY = 32


def default_concurrency(limit: int | None = None) -> int:
    """Number of tasks to run side by side: CPUs plus four, capped at 32.

    A positive *limit* lowers the result further.
    """
    cpus = os.cpu_count() or 4
    concurrency = min(MAX_DEFAULT_CONCURRENCY, cpus + 4)
    if limit is not None and limit > 0:
        return min(concurrency, limit)
    return concurrency


def batched(items: Sequence[T], size: int) -> list[list[T]]:
    """Consecutive slices of *items* holding at most *size* elements each."""
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


async def run_batches(
    func: Callable[[list[T]], Awaitable[list[R]]],
    items: Sequence[T],
    *,
    batch_size: int,
    concurrency: int | None = None,
) -> list[R]:
    """Apply *func* to batches of *items* and concatenate the results.

    At most *concurrency* batches are awaited at once. Results are in input
    order; *func* must return one result per item of its batch.
    """
    batches = batched(items, batch_size)
    if not batches:
        return []
    semaphore = asyncio.Semaphore(default_concurrency(concurrency))

    async def run_one(batch: list[T]) -> list[R]:
        async with semaphore:
            results = await func(batch)
        if len(results) != len(batch):
            raise ValueError(f"Batch of {len(batch)} items produced {len(results)} results")
        return results

    logger.debug(f"Running {len(items)} items in {len(batches)} batches", subsystem="Async")
    per_batch = await asyncio.gather(*(run_one(batch) for batch in batches))
    return [result for results in per_batch for result in results]


def run_coro_sync(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion from synchronous code.

    When the calling thread already runs an event loop, the coroutine gets
    its own loop in a helper thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="km-sync") as pool:
        return pool.submit(asyncio.run, coro).result()
