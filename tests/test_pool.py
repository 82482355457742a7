"""Tests for delivery concurrency limits and the background task pool."""

from __future__ import annotations

import asyncio

import pytest

from hookrelay.webhooks.pool import EndpointLimiter, TaskPool


class TestEndpointLimiter:
    """Tests for EndpointLimiter."""

    @pytest.mark.asyncio
    async def test_per_endpoint_cap(self) -> None:
        """No more than the per-endpoint cap should run at once for one endpoint."""
        limiter = EndpointLimiter(max_concurrent=10, per_endpoint=2)
        in_flight = 0
        peak = 0

        async def work() -> None:
            nonlocal in_flight, peak
            async with limiter.slot("whk_1"):
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1

        await asyncio.gather(*(work() for _ in range(6)))
        assert peak == 2

    @pytest.mark.asyncio
    async def test_global_cap(self) -> None:
        limiter = EndpointLimiter(max_concurrent=3, per_endpoint=5)
        in_flight = 0
        peak = 0

        async def work(endpoint_id: str) -> None:
            nonlocal in_flight, peak
            async with limiter.slot(endpoint_id):
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1

        await asyncio.gather(*(work(f"whk_{i}") for i in range(8)))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_endpoints_independent(self) -> None:
        """A saturated endpoint must not block a different one."""
        limiter = EndpointLimiter(max_concurrent=10, per_endpoint=1)
        release = asyncio.Event()

        async def hold() -> None:
            async with limiter.slot("whk_slow"):
                await release.wait()

        holder = asyncio.create_task(hold())
        await asyncio.sleep(0)

        async with limiter.slot("whk_fast"):
            pass

        release.set()
        await holder


class TestTaskPool:
    """Tests for TaskPool."""

    @pytest.mark.asyncio
    async def test_runs_submitted_work(self) -> None:
        pool = TaskPool(max_workers=2)
        results: list[int] = []

        async def work(i: int) -> None:
            results.append(i)

        for i in range(5):
            pool.submit(work(i))
        await pool.join()
        assert sorted(results) == [0, 1, 2, 3, 4]
        assert pool.pending == 0

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, caplog) -> None:
        pool = TaskPool()

        async def boom() -> None:
            raise RuntimeError("kaboom")

        task = pool.submit(boom(), name="boom")
        await pool.join()
        assert task.result() is None
        assert "Background task failed" in caplog.text

    @pytest.mark.asyncio
    async def test_close_drains_and_rejects(self) -> None:
        pool = TaskPool()
        done = asyncio.Event()

        async def slow() -> None:
            await asyncio.sleep(0.01)
            done.set()

        pool.submit(slow())
        await pool.close()
        assert done.is_set()

        async def late() -> None:
            return None

        with pytest.raises(RuntimeError):
            pool.submit(late())

    @pytest.mark.asyncio
    async def test_concurrency_cap(self) -> None:
        pool = TaskPool(max_workers=2)
        in_flight = 0
        peak = 0

        async def work() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        for _ in range(6):
            pool.submit(work())
        await pool.join()
        assert peak == 2
