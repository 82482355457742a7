"""Delivery mixin for WebhookService.

Provides event delivery, test sends, manual retries and the maintenance
operations driven by the retry worker.
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from hookrelay.exceptions import InvalidStateError, NotFoundError
from hookrelay.logging import delivery_context, get_logger
from hookrelay.models import (
    TEST_EVENT_TYPE,
    DeliverEventResult,
    DeliveryAttempt,
    DeliveryStatus,
    Event,
    RetryDeliveryResult,
    TestWebhookResult,
    utc_now,
)
from hookrelay.webhooks import DispatchOutcome

if TYPE_CHECKING:
    from hookrelay.config import Settings
    from hookrelay.storage import WebhookStorage
    from hookrelay.webhooks import Dispatcher, RetryScheduler, TaskPool

logger = get_logger(__name__)

NOT_FOUND_ERROR = "Webhook not found"
INACTIVE_ERROR = "Webhook is not active"


def _to_result(outcome: DispatchOutcome) -> DeliverEventResult:
    attempt = outcome.attempt
    return DeliverEventResult(
        success=outcome.succeeded,
        endpoint_id=attempt.endpoint_id,
        delivery_id=attempt.delivery_id,
        retryable=outcome.retry_scheduled,
        status=attempt.status,
        attempt_number=attempt.attempt_number,
        error=attempt.error_message,
    )


class DeliveryMixin:
    """Mixin providing delivery operations.

    Expects these attributes from the base class:
    - storage: WebhookStorage
    - settings: Settings
    - dispatcher: Dispatcher
    - scheduler: RetryScheduler
    - pool: TaskPool
    """

    storage: WebhookStorage
    settings: Settings
    dispatcher: Dispatcher
    scheduler: RetryScheduler
    pool: TaskPool

    async def deliver_event(self, endpoint_id: str, event: Event) -> DeliverEventResult:
        """Deliver an event to one endpoint.

        Performs the first attempt inline. A retryable failure is handed to
        the scheduler and reported with ``retryable=True``; later attempts run
        in the background.

        Args:
            endpoint_id: Target endpoint.
            event: Event to deliver.

        Returns:
            DeliverEventResult describing the first attempt.

        Example:
            ```python
            result = await service.deliver_event(
                webhook_id, Event(type="invoice.created", data={"id": "inv_1"})
            )
            ```
        """
        endpoint = await self.storage.get_endpoint(endpoint_id)
        if endpoint is None:
            return DeliverEventResult(success=False, endpoint_id=endpoint_id, error=NOT_FOUND_ERROR)
        if not endpoint.active:
            return DeliverEventResult(success=False, endpoint_id=endpoint_id, error=INACTIVE_ERROR)
        if not endpoint.matches_event(event.type):
            return DeliverEventResult(
                success=False,
                endpoint_id=endpoint_id,
                error=f"Webhook is not subscribed to {event.type}",
            )

        attempt = DeliveryAttempt(
            endpoint_id=endpoint.id,
            event_id=event.id,
            event_type=event.type,
            payload=event.to_body(),
            max_attempts=self.scheduler.policy_for(endpoint).max_attempts,
        )
        with delivery_context(
            delivery_id=attempt.delivery_id,
            endpoint_id=endpoint.id,
            event_type=event.type,
        ):
            outcome = await self.dispatcher.execute(endpoint, attempt)
            logger.info(
                "Delivery finished first attempt",
                status=outcome.attempt.status.value,
                retry_scheduled=outcome.retry_scheduled,
            )
        return _to_result(outcome)

    async def publish_event(self, event: Event) -> list[DeliverEventResult]:
        """Deliver an event to every active endpoint subscribed to its type.

        Endpoints are delivered to concurrently. A failure for one endpoint
        is reported in its result and does not affect the others.
        """
        endpoints = await self.storage.get_endpoints_for_event(event.type)
        if not endpoints:
            logger.debug("No webhooks subscribed", event_type=event.type)
            return []

        outcomes = await asyncio.gather(
            *(self.deliver_event(endpoint.id, event) for endpoint in endpoints),
            return_exceptions=True,
        )

        results: list[DeliverEventResult] = []
        for endpoint, outcome in zip(endpoints, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Webhook delivery failed",
                    endpoint_id=endpoint.id,
                    error=str(outcome),
                )
                results.append(
                    DeliverEventResult(success=False, endpoint_id=endpoint.id, error=str(outcome))
                )
            else:
                results.append(outcome)
        return results

    def enqueue_event(self, event: Event) -> asyncio.Task[Any]:
        """Publish an event in the background and return immediately."""
        return self.pool.submit(self.publish_event(event), name=f"publish-{event.id}")

    async def test_webhook(
        self,
        webhook_id: str,
        test_payload: dict[str, Any] | None = None,
    ) -> TestWebhookResult:
        """Send a single verification request to an endpoint.

        The request is signed like a real delivery and carries the
        ``webhook.test`` event type. Nothing is recorded and failures are
        not retried.

        Args:
            webhook_id: Endpoint to verify.
            test_payload: Body to send instead of the default test event,
                serialized compactly with its key order kept.

        Returns:
            TestWebhookResult with outcome and response time in milliseconds.
        """
        endpoint = await self.storage.get_endpoint(webhook_id)
        if endpoint is None:
            return TestWebhookResult(success=False, response_time=0.0, error=NOT_FOUND_ERROR)
        if not endpoint.active:
            return TestWebhookResult(success=False, response_time=0.0, error=INACTIVE_ERROR)

        if test_payload is not None:
            body = json.dumps(
                test_payload, separators=(",", ":"), ensure_ascii=False, default=str
            )
        else:
            body = Event.for_test(endpoint.id).to_body()
        return await self.dispatcher.send_test(endpoint, body, TEST_EVENT_TYPE)

    async def retry_delivery(self, delivery_id: str) -> RetryDeliveryResult:
        """Retry a failed delivery now.

        The retry runs in the background; the result only says whether it
        was accepted.

        Returns:
            RetryDeliveryResult with the attempt number that will be sent.
        """
        try:
            attempt = await self.scheduler.retry_delivery(delivery_id)
        except NotFoundError:
            return RetryDeliveryResult(
                success=False, delivery_id=delivery_id, error="Delivery not found"
            )
        except InvalidStateError as e:
            return RetryDeliveryResult(success=False, delivery_id=delivery_id, error=e.message)

        self.pool.submit(self._run_attempt(attempt), name=f"retry-{delivery_id}")
        return RetryDeliveryResult(
            success=True,
            delivery_id=delivery_id,
            attempt_number=attempt.attempt_number,
        )

    async def _run_attempt(self, attempt: DeliveryAttempt) -> DispatchOutcome | None:
        """Claim and execute a pending attempt.

        Returns None when another worker already claimed it.
        """
        claimed = await self.scheduler.claim(attempt)
        if claimed is None:
            return None

        with delivery_context(delivery_id=claimed.delivery_id, endpoint_id=claimed.endpoint_id):
            endpoint = await self.storage.get_endpoint(claimed.endpoint_id)
            if endpoint is None or not endpoint.active:
                await self.scheduler.cancel(claimed)
                return DispatchOutcome(attempt=claimed)
            return await self.dispatcher.execute(endpoint, claimed)

    async def process_retries(self) -> int:
        """Execute every due pending attempt.

        Returns:
            Number of attempts processed (sent or cancelled).
        """
        due = await self.scheduler.due_attempts(limit=self.settings.retry_batch_size)
        if not due:
            return 0

        outcomes = await asyncio.gather(
            *(self._run_attempt(attempt) for attempt in due),
            return_exceptions=True,
        )

        processed = 0
        for attempt, outcome in zip(due, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Retry failed",
                    delivery_id=attempt.delivery_id,
                    attempt_number=attempt.attempt_number,
                    error=str(outcome),
                )
            elif outcome is not None:
                processed += 1

        logger.info("Processed due retries", due=len(due), processed=processed)
        return processed

    async def reclaim_stale(self) -> int:
        """Recover attempts left in sending by a crashed process."""
        return await self.scheduler.reclaim_stale(
            timedelta(seconds=self.settings.stale_sending_seconds)
        )

    async def purge_deliveries(self, older_than: timedelta | None = None) -> int:
        """Delete finished attempts older than the retention period.

        Args:
            older_than: Age cutoff. Defaults to settings.delivery_retention_days.

        Returns:
            Number of attempt rows deleted.
        """
        older_than = older_than or timedelta(days=self.settings.delivery_retention_days)
        return await self.storage.purge_attempts(utc_now() - older_than)

    async def get_delivery_history(self, delivery_id: str) -> list[DeliveryAttempt]:
        """All attempts of one delivery, oldest first."""
        return await self.storage.get_delivery_attempts(delivery_id)

    async def list_deliveries(
        self,
        endpoint_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """List attempts, newest first, optionally filtered by endpoint and status."""
        return await self.storage.list_attempts(
            endpoint_id=endpoint_id, status=status, limit=limit, offset=offset
        )


__all__ = ["DeliveryMixin"]
