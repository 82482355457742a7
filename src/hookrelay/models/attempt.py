"""Delivery attempt records.

One ``DeliveryAttempt`` is stored per HTTP try. Attempts that share a
``delivery_id`` form a delivery: the logical unit of "deliver event E to
endpoint X". The latest attempt's status is the delivery's state.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now


class DeliveryStatus(str, Enum):
    """Delivery attempt lifecycle.

    pending -> sending -> {succeeded | failed_retryable | failed_permanent}
    failed_retryable -> pending (next attempt) until the budget is spent,
    after which the last attempt becomes exhausted.
    """

    PENDING = "pending"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_PERMANENT = "failed_permanent"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        """No further attempts follow a terminal status."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        DeliveryStatus.SUCCEEDED,
        DeliveryStatus.FAILED_PERMANENT,
        DeliveryStatus.EXHAUSTED,
    }
)


def hash_payload(payload: str) -> str:
    """SHA-256 hex digest of a payload, kept for audit."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DeliveryAttempt(BaseModel):
    """Record of a single delivery attempt.

    Attributes:
        id: Unique identifier for this attempt.
        endpoint_id: Endpoint the attempt targets.
        delivery_id: Groups all attempts of one event to one endpoint.
        event_id: ID of the delivered event.
        event_type: Type of the delivered event.
        payload: Exact request body (canonical JSON), resent verbatim on retry.
        payload_hash: SHA-256 of the payload.
        signature: Signature header value sent with this attempt.
        attempt_number: 1-based position within the delivery.
        max_attempts: Attempt budget for the delivery.
        status: Lifecycle status.
        response_status_code: HTTP status, when a response was received.
        response_time_ms: Wall-clock duration of the HTTP call.
        response_body: Response body, truncated.
        error_message: Failure description.
        scheduled_at: When the attempt becomes due.
        sent_at: When the HTTP call started.
        completed_at: When the outcome was recorded.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("att"))
    endpoint_id: str
    delivery_id: str = Field(default_factory=lambda: generate_id("dlv"))
    event_id: str
    event_type: str
    payload: str
    payload_hash: str = ""
    signature: str | None = None

    attempt_number: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    status: DeliveryStatus = DeliveryStatus.PENDING

    response_status_code: int | None = None
    response_time_ms: float | None = Field(default=None, ge=0.0)
    response_body: str | None = None
    error_message: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    scheduled_at: datetime = Field(default_factory=utc_now)
    sent_at: datetime | None = None
    completed_at: datetime | None = None

    def model_post_init(self, __context: object) -> None:
        if not self.payload_hash:
            self.payload_hash = hash_payload(self.payload)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def has_budget(self) -> bool:
        """Whether another attempt may follow this one."""
        return self.attempt_number < self.max_attempts

    def mark_sending(self, signature: str) -> DeliveryAttempt:
        """Record that the HTTP call is about to start."""
        self.status = DeliveryStatus.SENDING
        self.signature = signature
        self.sent_at = utc_now()
        return self

    def mark_outcome(
        self,
        status: DeliveryStatus,
        *,
        response_status_code: int | None = None,
        response_time_ms: float | None = None,
        response_body: str | None = None,
        error_message: str | None = None,
        body_limit: int = 1000,
    ) -> DeliveryAttempt:
        """Record the classified result of the HTTP call."""
        self.status = status
        self.response_status_code = response_status_code
        self.response_time_ms = response_time_ms
        self.response_body = response_body[:body_limit] if response_body else None
        self.error_message = error_message
        self.completed_at = utc_now()
        return self

    def mark_exhausted(self) -> DeliveryAttempt:
        """Close a failed attempt whose delivery has no budget left."""
        self.status = DeliveryStatus.EXHAUSTED
        self.error_message = f"Max attempts exceeded: {self.error_message or 'unknown error'}"
        if self.completed_at is None:
            self.completed_at = utc_now()
        return self

    def next_attempt(self, scheduled_at: datetime) -> DeliveryAttempt:
        """Build the pending attempt that follows this one."""
        return DeliveryAttempt(
            endpoint_id=self.endpoint_id,
            delivery_id=self.delivery_id,
            event_id=self.event_id,
            event_type=self.event_type,
            payload=self.payload,
            payload_hash=self.payload_hash,
            attempt_number=self.attempt_number + 1,
            max_attempts=self.max_attempts,
            scheduled_at=scheduled_at,
        )


__all__ = [
    "DeliveryAttempt",
    "DeliveryStatus",
    "TERMINAL_STATUSES",
    "hash_payload",
]
