"""Background retry worker.

Polls for due attempts and stale ``sending`` rows on a fixed interval.
One failing tick is logged and the loop carries on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from hookrelay.config import settings
from hookrelay.logging import get_logger

logger = get_logger(__name__)


class RetryWorker:
    """Runs retry processing in a background task.

    Example:
        ```python
        worker = RetryWorker(service.process_retries, service.reclaim_stale)
        worker.start()
        ...
        await worker.stop()
        ```
    """

    def __init__(
        self,
        process_retries: Callable[[], Awaitable[int]],
        reclaim_stale: Callable[[], Awaitable[int]] | None = None,
        interval_seconds: float | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            process_retries: Executes due attempts, returning how many ran.
            reclaim_stale: Recovers attempts stuck in sending.
            interval_seconds: Pause between ticks. Defaults to
                settings.retry_poll_interval_seconds.
        """
        self._process_retries = process_retries
        self._reclaim_stale = reclaim_stale
        self._interval = interval_seconds or settings.retry_poll_interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling loop. Calling start twice is a no-op."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="hookrelay-retry-worker")
        logger.info("Retry worker started", interval=self._interval)

    async def stop(self) -> None:
        """Finish the current tick and stop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Retry worker stopped")

    async def tick(self) -> int:
        """Run one polling round.

        Returns:
            Number of attempts executed.
        """
        if self._reclaim_stale is not None:
            await self._reclaim_stale()
        return await self._process_retries()

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.tick()
                if processed:
                    logger.debug("Processed retries", count=processed)
            except Exception:
                logger.exception("Retry worker tick failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                continue


__all__ = ["RetryWorker"]
