"""
Bounded concurrent processing with optional progress tracking
"""

import logging
import asyncio
from typing import Any, Awaitable, Callable, List, Sequence
from tqdm.asyncio import tqdm

logger = logging.getLogger(__name__)


class BatchProcessor:
    """Run an async function over many items with at most `max_concurrent` in flight"""

    def __init__(self, max_concurrent: int = 5):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent

    async def process_batch(
        self,
        items: Sequence[Any],
        process_fn: Callable[[Any], Awaitable[Any]],
        show_progress: bool = False,
        desc: str = None
    ) -> List[Any]:
        """
        Process items with concurrency control.

        Args:
            items: Items to process
            process_fn: Async function to process each item. It should return an
                outcome object rather than raise; an exception escaping it
                propagates to the caller.
            show_progress: Whether to show a progress bar
            desc: Progress bar label

        Returns:
            Results in the same order as `items`
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def process_with_semaphore(item):
            async with semaphore:
                return await process_fn(item)

        tasks = [process_with_semaphore(item) for item in items]

        if show_progress:
            return await tqdm.gather(*tasks, total=len(tasks), desc=desc)
        return list(await asyncio.gather(*tasks))
