"""Tests for the retry decorator and BatchProcessor."""

import asyncio

import pytest

from utils.batch_processor import BatchProcessor
from utils.retry import retry_with_backoff


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    async def test_retries_until_success(self) -> None:
        attempts = []

        @retry_with_backoff(max_retries=3, base_delay=0.001, retry_on=(ConnectionError,))
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert len(attempts) == 3

    async def test_gives_up_after_max_retries(self) -> None:
        attempts = []

        @retry_with_backoff(max_retries=2, base_delay=0.001, retry_on=(ConnectionError,))
        async def broken():
            attempts.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await broken()
        assert len(attempts) == 3

    async def test_giveup_predicate(self) -> None:
        attempts = []

        @retry_with_backoff(base_delay=0.001, retry_on=(ValueError,), giveup=lambda e: "fatal" in str(e))
        async def fatal():
            attempts.append(1)
            raise ValueError("fatal")

        with pytest.raises(ValueError):
            await fatal()
        assert len(attempts) == 1


class TestBatchProcessor:
    """Tests for BatchProcessor."""

    async def test_keeps_order_and_bounds_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def work(item: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01 * (5 - item))
            in_flight -= 1
            return item * 10

        results = await BatchProcessor(max_concurrent=2).process_batch([1, 2, 3, 4], work)
        assert results == [10, 20, 30, 40]
        assert peak == 2

    async def test_with_progress(self) -> None:
        async def double(item: int) -> int:
            return item * 2

        results = await BatchProcessor(max_concurrent=3).process_batch(
            [1, 2, 3], double, show_progress=True, desc="Doubling"
        )
        assert list(results) == [2, 4, 6]

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError):
            BatchProcessor(max_concurrent=0)
