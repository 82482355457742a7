"""Structured results returned by the WebhookService facade.

The facade never raises for expected business conditions; callers render
these results directly.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .attempt import DeliveryStatus


class CreateWebhookResult(BaseModel):
    """Outcome of registering an endpoint.

    ``secret`` carries the plaintext signing key and is only ever populated
    here, at creation time.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    webhook_id: str | None = None
    secret: str | None = None
    error: str | None = None
    field: str | None = None


class DeliverEventResult(BaseModel):
    """Outcome of the first attempt of a delivery."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    endpoint_id: str | None = None
    delivery_id: str | None = None
    retryable: bool = False
    status: DeliveryStatus | None = None
    attempt_number: int | None = None
    error: str | None = None


class TestWebhookResult(BaseModel):
    """Outcome of a one-off verification send. Timing is always reported."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    success: bool
    response_time: float = Field(ge=0.0, description="Milliseconds")
    status_code: int | None = None
    error: str | None = None


class RetryDeliveryResult(BaseModel):
    """Outcome of a manual retry request."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    delivery_id: str
    attempt_number: int | None = None
    error: str | None = None


class WebhookStats(BaseModel):
    """Delivery statistics for one endpoint."""

    model_config = ConfigDict(extra="forbid")

    endpoint_id: str
    active: bool
    delivery_count: int
    success_count: int
    failure_count: int
    consecutive_failures: int
    success_rate: float = Field(ge=0.0, le=1.0)
    pending_retries: int
    last_delivery_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None


__all__ = [
    "CreateWebhookResult",
    "DeliverEventResult",
    "RetryDeliveryResult",
    "TestWebhookResult",
    "WebhookStats",
]
