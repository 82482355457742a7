"""Bounded concurrency for deliveries and background work."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)


class EndpointLimiter:
    """Caps in-flight deliveries globally and per endpoint.

    Deliveries beyond either cap wait on the semaphore instead of being
    dropped. Per-endpoint semaphores are created on first use.
    """

    def __init__(self, max_concurrent: int = 50, per_endpoint: int = 2) -> None:
        self._global = asyncio.Semaphore(max_concurrent)
        self._per_endpoint_limit = per_endpoint
        self._per_endpoint: dict[str, asyncio.Semaphore] = {}

    def _endpoint_semaphore(self, endpoint_id: str) -> asyncio.Semaphore:
        semaphore = self._per_endpoint.get(endpoint_id)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self._per_endpoint_limit)
            self._per_endpoint[endpoint_id] = semaphore
        return semaphore

    @asynccontextmanager
    async def slot(self, endpoint_id: str) -> AsyncIterator[None]:
        """Hold one delivery slot for an endpoint."""
        # Endpoint first so a slow endpoint never holds global slots while queued
        async with self._endpoint_semaphore(endpoint_id), self._global:
            yield


class TaskPool:
    """Runs fire-and-forget coroutines with a concurrency cap.

    Submitted tasks are tracked until they finish. Exceptions are logged,
    never propagated to the submitter. ``close`` waits for in-flight work.

    Example:
        ```python
        pool = TaskPool(max_workers=20)
        pool.submit(dispatcher.execute(attempt), name="retry")
        await pool.close()
        ```
    """

    def __init__(self, max_workers: int = 20) -> None:
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of submitted tasks that have not finished."""
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Schedule a coroutine on the pool.

        Raises:
            RuntimeError: If the pool has been closed.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("TaskPool is closed")

        task = asyncio.create_task(self._run(coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        async with self._semaphore:
            try:
                return await coro
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background task failed")
                return None

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting work and drain in-flight tasks."""
        self._closed = True
        await self.join()


__all__ = ["EndpointLimiter", "TaskPool"]
