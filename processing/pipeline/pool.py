"""
Bounded worker pool for per-sheet sub-work.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from utils.exceptions import JobCancellationError

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


async def run_bounded(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], Awaitable[Optional[ResultT]]],
    limit: int = 5,
    label: str = "task",
) -> List[Optional[ResultT]]:
    """
    Run ``worker`` over ``items`` with at most ``limit`` calls in flight.

    Workers pull the next unclaimed index until none remain. The result list
    is aligned with ``items``; an item whose worker raised is None. A
    cancellation raised by any worker stops the pool and propagates.
    """
    results: List[Optional[ResultT]] = [None] * len(items)
    next_index = 0

    async def pull() -> None:
        nonlocal next_index
        while next_index < len(items):
            index = next_index
            next_index += 1
            try:
                results[index] = await worker(items[index])
            except JobCancellationError:
                raise
            except Exception as e:
                logger.warning(f"{label} failed for item {index}: {str(e)}")

    worker_count = max(1, min(limit, len(items)))
    tasks = [asyncio.create_task(pull()) for _ in range(worker_count)]
    try:
        await asyncio.gather(*tasks)
    except JobCancellationError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results
