"""Retry scheduling with exponential backoff.

The scheduler decides when (and whether) a failed delivery is tried again.
It only reads and writes attempt rows; sending is left to the Dispatcher.

Backoff before attempt ``n + 1``::

    min(base * 2 ** n, max) * uniform(1 - jitter, 1 + jitter), capped at max

With the default policy (1s base, 20% jitter) attempt 2 follows attempt 1
after 1.6 to 2.4 seconds.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from hookrelay.config import RetryPolicy, settings
from hookrelay.exceptions import InvalidStateError, NotFoundError
from hookrelay.models import DeliveryAttempt, DeliveryStatus, WebhookEndpoint, utc_now

if TYPE_CHECKING:
    from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)

ENDPOINT_DISABLED_ERROR = "Endpoint disabled"
INTERRUPTED_ERROR = "Delivery interrupted"


def compute_delay(
    completed_attempt: int,
    policy: RetryPolicy,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """Seconds to wait before the attempt following ``completed_attempt``.

    Args:
        completed_attempt: 1-based number of the attempt that just failed.
        policy: Backoff parameters.
        uniform: Random source, injectable for deterministic tests.

    Returns:
        Delay in seconds, never above ``policy.max_delay_seconds``.
    """
    raw = min(policy.base_delay_seconds * 2**completed_attempt, policy.max_delay_seconds)
    if policy.jitter:
        raw *= uniform(1 - policy.jitter, 1 + policy.jitter)
    return min(raw, policy.max_delay_seconds)


class RetryScheduler:
    """Schedules follow-up attempts for retryable failures.

    Handles:
    - Creating attempt n+1 with a backoff delay while budget remains
    - Marking deliveries exhausted when it does not
    - Manual retries of failed deliveries
    - Resolving attempts whose endpoint was disabled meanwhile
    - Reclaiming attempts stuck in ``sending`` after a crash

    Example:
        ```python
        scheduler = RetryScheduler(storage)
        next_attempt = await scheduler.handle_outcome(endpoint, attempt)
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        default_policy: RetryPolicy | None = None,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: WebhookStorage holding attempt rows.
            default_policy: Policy for endpoints without an override.
                Defaults to settings.retry_policy.
            uniform: Random source for jitter.
        """
        self._storage = storage
        self._default_policy = default_policy or settings.retry_policy
        self._uniform = uniform

    def policy_for(self, endpoint: WebhookEndpoint | None) -> RetryPolicy:
        if endpoint is not None and endpoint.retry_policy is not None:
            return endpoint.retry_policy
        return self._default_policy

    def compute_delay(self, completed_attempt: int, policy: RetryPolicy | None = None) -> float:
        return compute_delay(completed_attempt, policy or self._default_policy, self._uniform)

    async def handle_outcome(
        self,
        endpoint: WebhookEndpoint | None,
        attempt: DeliveryAttempt,
    ) -> DeliveryAttempt | None:
        """React to a recorded attempt outcome.

        Only failed_retryable attempts lead anywhere: either a new pending
        attempt is stored, or the attempt is rewritten as exhausted. Nothing
        happens when a manual retry already created the follow-up.

        Returns:
            The scheduled follow-up attempt, or None.
        """
        if attempt.status != DeliveryStatus.FAILED_RETRYABLE:
            return None

        async with self._storage.delivery_lock(attempt.delivery_id):
            latest = await self._storage.get_latest_attempt(attempt.delivery_id)
            if latest is not None and latest.attempt_number > attempt.attempt_number:
                logger.debug(
                    "Delivery %s already has attempt %d", attempt.delivery_id, latest.attempt_number
                )
                return None

            if not attempt.has_budget:
                attempt.mark_exhausted()
                await self._storage.record_attempt(attempt)
                logger.warning(
                    "Delivery %s exhausted after %d attempts: %s",
                    attempt.delivery_id,
                    attempt.attempt_number,
                    attempt.error_message,
                )
                return None

            delay = self.compute_delay(attempt.attempt_number, self.policy_for(endpoint))
            next_attempt = attempt.next_attempt(utc_now() + timedelta(seconds=delay))
            await self._storage.record_attempt(next_attempt)
        logger.info(
            "Delivery %s scheduled for retry (attempt %d in %.1fs)",
            attempt.delivery_id,
            next_attempt.attempt_number,
            delay,
        )
        return next_attempt

    async def retry_delivery(self, delivery_id: str) -> DeliveryAttempt:
        """Make a failed delivery due immediately.

        A failed_retryable delivery with budget left gets a new attempt
        scheduled now; a pending one is re-armed to run now.

        Args:
            delivery_id: Delivery to retry.

        Returns:
            The pending attempt that will carry the retry.

        Raises:
            NotFoundError: If the delivery does not exist.
            InvalidStateError: If the delivery already succeeded, failed
                permanently, is exhausted, is being sent, or has no budget left.
        """
        async with self._storage.delivery_lock(delivery_id):
            latest = await self._storage.get_latest_attempt(delivery_id)
            if latest is None:
                raise NotFoundError("delivery", delivery_id)

            if latest.status == DeliveryStatus.PENDING:
                latest.scheduled_at = utc_now()
                await self._storage.record_attempt(latest)
                logger.info(
                    "Delivery %s re-armed (attempt %d)", delivery_id, latest.attempt_number
                )
                return latest

            if latest.status != DeliveryStatus.FAILED_RETRYABLE:
                raise InvalidStateError(delivery_id, latest.status.value)

            if not latest.has_budget:
                latest.mark_exhausted()
                await self._storage.record_attempt(latest)
                raise InvalidStateError(
                    delivery_id,
                    latest.status.value,
                    f"Max retries exceeded for delivery {delivery_id}",
                )

            next_attempt = latest.next_attempt(utc_now())
            await self._storage.record_attempt(next_attempt)
        logger.info(
            "Manual retry of delivery %s (attempt %d)", delivery_id, next_attempt.attempt_number
        )
        return next_attempt

    async def due_attempts(
        self, now: datetime | None = None, limit: int | None = None
    ) -> list[DeliveryAttempt]:
        return await self._storage.get_due_attempts(
            now or utc_now(), limit or settings.retry_batch_size
        )

    async def claim(self, attempt: DeliveryAttempt) -> DeliveryAttempt | None:
        """Take ownership of a due attempt (pending -> sending)."""
        return await self._storage.claim_attempt(attempt, utc_now())

    async def cancel(
        self, attempt: DeliveryAttempt, reason: str = ENDPOINT_DISABLED_ERROR
    ) -> DeliveryAttempt:
        """Close an attempt without sending it."""
        attempt.mark_outcome(DeliveryStatus.FAILED_PERMANENT, error_message=reason)
        await self._storage.record_attempt(attempt)
        logger.info("Delivery %s cancelled: %s", attempt.delivery_id, reason)
        return attempt

    async def reclaim_stale(self, older_than: timedelta | None = None) -> int:
        """Recover attempts left in ``sending`` by a crashed process.

        Each is closed as failed_retryable and run through the normal
        retry path, so it is retried or exhausted like any other failure.

        Returns:
            Number of attempts reclaimed.
        """
        older_than = older_than or timedelta(seconds=settings.stale_sending_seconds)
        stale = await self._storage.get_stale_sending(utc_now() - older_than)

        reclaimed = 0
        for attempt in stale:
            async with self._storage.delivery_lock(attempt.delivery_id):
                current = await self._storage.get_attempt(attempt.id)
                if current is None or current.status != DeliveryStatus.SENDING:
                    continue
                current.mark_outcome(
                    DeliveryStatus.FAILED_RETRYABLE, error_message=INTERRUPTED_ERROR
                )
                await self._storage.record_attempt(current)
            endpoint = await self._storage.get_endpoint(current.endpoint_id)
            await self.handle_outcome(endpoint, current)
            reclaimed += 1

        if reclaimed:
            logger.warning("Reclaimed %d delivery attempts stuck in sending", reclaimed)
        return reclaimed


__all__ = [
    "ENDPOINT_DISABLED_ERROR",
    "INTERRUPTED_ERROR",
    "RetryScheduler",
    "compute_delay",
]
