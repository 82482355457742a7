"""Webhook dispatch: sign, send, classify and record one attempt.

Every call to ``Dispatcher.execute`` produces exactly one attempt row and
never raises for delivery failures. Outcomes are classified as:

- 2xx: succeeded
- 408, 429, 5xx, timeouts and connection errors: failed_retryable
- any other status (4xx, and 1xx/3xx since redirects are not followed):
  failed_permanent
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hookrelay.config import settings
from hookrelay.exceptions import DeliveryError
from hookrelay.models import (
    DeliveryAttempt,
    DeliveryStatus,
    TestWebhookResult,
    WebhookEndpoint,
    utc_now,
)

from .pool import EndpointLimiter
from .signature import SIGNATURE_HEADER, compute_signature
from .transport import OutboundRequest, Transport, TransportResponse

if TYPE_CHECKING:
    from hookrelay.storage import WebhookStorage

    from .scheduler import RetryScheduler

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Webhook-Event"
ENDPOINT_HEADER = "X-Webhook-Id"

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def classify_status(status_code: int) -> DeliveryStatus:
    """Map an HTTP status code to an attempt outcome."""
    if 200 <= status_code < 300:
        return DeliveryStatus.SUCCEEDED
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return DeliveryStatus.FAILED_RETRYABLE
    return DeliveryStatus.FAILED_PERMANENT


def build_headers(endpoint: WebhookEndpoint, event_type: str, signature: str) -> dict[str, str]:
    """Assemble request headers. Engine headers win over custom ones."""
    headers = dict(endpoint.headers)
    headers.update(
        {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: signature,
            EVENT_HEADER: event_type,
            ENDPOINT_HEADER: endpoint.id,
        }
    )
    return headers


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


@dataclass
class DispatchOutcome:
    """Result of executing one attempt.

    Attributes:
        attempt: The executed attempt, in its final status.
        next_attempt: Pending follow-up attempt, when a retry was scheduled.
    """

    attempt: DeliveryAttempt
    next_attempt: DeliveryAttempt | None = None

    @property
    def succeeded(self) -> bool:
        return self.attempt.status == DeliveryStatus.SUCCEEDED

    @property
    def retry_scheduled(self) -> bool:
        return self.next_attempt is not None


class Dispatcher:
    """Sends delivery attempts to endpoints.

    Handles:
    - Signing the stored payload with the endpoint secret
    - Posting through the Transport within the endpoint's concurrency slot
    - Recording the attempt before and after the HTTP call
    - Handing retryable failures to the RetryScheduler
    - Updating endpoint counters and auto-disabling failing endpoints

    Example:
        ```python
        dispatcher = Dispatcher(storage, HttpxTransport(), scheduler)
        outcome = await dispatcher.execute(endpoint, attempt)
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        transport: Transport,
        scheduler: RetryScheduler,
        limiter: EndpointLimiter | None = None,
        default_timeout_seconds: float | None = None,
        response_body_limit: int | None = None,
        auto_disable_threshold: int | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            storage: WebhookStorage for attempts and endpoint counters.
            transport: Outbound HTTP capability.
            scheduler: Receives failed_retryable attempts.
            limiter: Global and per-endpoint concurrency caps.
            default_timeout_seconds: Timeout for endpoints without their own.
            response_body_limit: Characters of response body stored.
            auto_disable_threshold: Consecutive failures before an endpoint is
                disabled. 0 turns auto-disable off.
        """
        self._storage = storage
        self._transport = transport
        self._scheduler = scheduler
        self._limiter = limiter or EndpointLimiter(
            settings.max_concurrent_deliveries, settings.max_in_flight_per_endpoint
        )
        self._default_timeout = default_timeout_seconds or settings.request_timeout_seconds
        self._body_limit = (
            response_body_limit if response_body_limit is not None else settings.response_body_limit
        )
        self._auto_disable_threshold = (
            auto_disable_threshold
            if auto_disable_threshold is not None
            else settings.auto_disable_threshold
        )

    def _request(self, endpoint: WebhookEndpoint, body: str, event_type: str) -> OutboundRequest:
        signature = compute_signature(body, endpoint.secret.get_secret_value())
        return OutboundRequest(
            url=str(endpoint.url),
            body=body.encode("utf-8"),
            headers=build_headers(endpoint, event_type, signature),
            timeout_seconds=endpoint.timeout_seconds or self._default_timeout,
        )

    async def _post(
        self, request: OutboundRequest
    ) -> tuple[TransportResponse | None, DeliveryStatus, str | None]:
        """Send a request and classify the result. Never raises."""
        try:
            response = await self._transport.send(request)
        except DeliveryError as e:
            status = (
                DeliveryStatus.FAILED_RETRYABLE if e.retryable else DeliveryStatus.FAILED_PERMANENT
            )
            return None, status, e.message
        except Exception as e:
            logger.exception("Unexpected error posting to %s", request.url)
            return None, DeliveryStatus.FAILED_RETRYABLE, f"Unexpected error: {e}"

        status = classify_status(response.status_code)
        error = None
        if status != DeliveryStatus.SUCCEEDED:
            error = f"HTTP {response.status_code}"
            if response.body:
                error = f"{error}: {response.body[:200]}"
        return response, status, error

    async def execute(self, endpoint: WebhookEndpoint, attempt: DeliveryAttempt) -> DispatchOutcome:
        """Send one attempt and record its outcome.

        The attempt is written as ``sending`` before the HTTP call and
        upserted with the classified outcome afterwards. Endpoint counters are
        updated only after the outcome is stored.

        Args:
            endpoint: Target endpoint (its current secret signs the payload).
            attempt: Pending or claimed attempt carrying the payload.

        Returns:
            DispatchOutcome with the final attempt and any scheduled retry.
        """
        async with self._limiter.slot(endpoint.id):
            request = self._request(endpoint, attempt.payload, attempt.event_type)
            attempt.mark_sending(request.headers[SIGNATURE_HEADER])
            await self._storage.record_attempt(attempt)

            started = time.perf_counter()
            response, status, error = await self._post(request)
            attempt.mark_outcome(
                status,
                response_status_code=response.status_code if response else None,
                response_time_ms=_elapsed_ms(started),
                response_body=response.body if response else None,
                error_message=error,
                body_limit=self._body_limit,
            )
            await self._storage.record_attempt(attempt)

        self._log_outcome(endpoint, attempt)
        next_attempt = await self._scheduler.handle_outcome(endpoint, attempt)
        await self._update_endpoint(endpoint, attempt)
        return DispatchOutcome(attempt=attempt, next_attempt=next_attempt)

    def _log_outcome(self, endpoint: WebhookEndpoint, attempt: DeliveryAttempt) -> None:
        if attempt.status == DeliveryStatus.SUCCEEDED:
            logger.info(
                "Webhook delivered: %s to %s (status %d, attempt %d)",
                attempt.event_type,
                endpoint.url,
                attempt.response_status_code,
                attempt.attempt_number,
            )
        else:
            logger.warning(
                "Webhook attempt failed: %s to %s (%s, attempt %d): %s",
                attempt.event_type,
                endpoint.url,
                attempt.status.value,
                attempt.attempt_number,
                attempt.error_message,
            )

    async def _update_endpoint(self, endpoint: WebhookEndpoint, attempt: DeliveryAttempt) -> None:
        closes_delivery = attempt.status in (
            DeliveryStatus.FAILED_PERMANENT,
            DeliveryStatus.EXHAUSTED,
        )
        updated = await self._storage.record_endpoint_outcome(
            endpoint.id,
            succeeded=attempt.status == DeliveryStatus.SUCCEEDED,
            counts_as_failure_streak=closes_delivery,
            at=attempt.completed_at,
        )
        if updated is None or not closes_delivery:
            return

        threshold = self._auto_disable_threshold
        if threshold and updated.active and updated.consecutive_failures >= threshold:
            reason = f"Auto-disabled after {updated.consecutive_failures} consecutive failures"
            await self._storage.update_endpoint(
                endpoint.id,
                active=False,
                disabled_at=utc_now(),
                disabled_reason=reason,
            )
            logger.error(
                "ALERT: webhook %s (%s) disabled after %d consecutive failed deliveries",
                endpoint.id,
                endpoint.url,
                updated.consecutive_failures,
            )

    async def send_test(
        self, endpoint: WebhookEndpoint, body: str, event_type: str
    ) -> TestWebhookResult:
        """Send a one-off request without recording an attempt.

        Used to verify an endpoint. Nothing is persisted and no retry is
        scheduled.
        """
        async with self._limiter.slot(endpoint.id):
            request = self._request(endpoint, body, event_type)
            started = time.perf_counter()
            response, status, error = await self._post(request)
            elapsed = _elapsed_ms(started)

        logger.info(
            "Test webhook sent to %s (%s in %.1fms)", endpoint.url, status.value, elapsed
        )
        return TestWebhookResult(
            success=status == DeliveryStatus.SUCCEEDED,
            response_time=elapsed,
            status_code=response.status_code if response else None,
            error=error,
        )


__all__ = [
    "DispatchOutcome",
    "Dispatcher",
    "ENDPOINT_HEADER",
    "EVENT_HEADER",
    "build_headers",
    "classify_status",
]
