"""Webhook endpoint models.

An endpoint is a registered subscriber URL plus its signing secret and
event filter. Endpoints are never hard-deleted while delivery attempts
reference them; deleting one disables it.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    SecretStr,
    SerializationInfo,
    field_serializer,
    field_validator,
)

from hookrelay.config import RetryPolicy

from .base import generate_id, utc_now

# "*" matches everything; "invoice.*" matches any event under "invoice."
WILDCARD = "*"
EVENT_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*(\.\*)?$")

# Headers the engine sets itself; custom headers may not override them
RESERVED_HEADERS = frozenset(
    {
        "content-type",
        "content-length",
        "host",
        "x-webhook-signature",
        "x-webhook-event",
        "x-webhook-id",
    }
)


def _validate_event_patterns(events: list[str]) -> list[str]:
    cleaned: list[str] = []
    for event in events:
        event = event.strip()
        if event != WILDCARD and not EVENT_PATTERN.match(event):
            raise ValueError(f"Invalid event type: {event!r}")
        if event not in cleaned:
            cleaned.append(event)
    return cleaned


def _validate_headers(headers: dict[str, str]) -> dict[str, str]:
    for name in headers:
        if name.lower() in RESERVED_HEADERS:
            raise ValueError(f"Header {name!r} is set by the delivery engine")
    return headers


class WebhookEndpoint(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier.
        url: Absolute http(s) URL receiving events.
        secret: HMAC signing key. Masked in repr and JSON output.
        events: Subscribed event types. Empty or "*" subscribes to everything.
        active: Inactive endpoints are skipped but remain queryable.
        name: Human-readable name.
        description: Optional description.
        user_id: Owner (optional).
        organization_id: Organization (optional).
        headers: Extra headers sent with every delivery.
        timeout_seconds: Per-endpoint request timeout (None = settings default).
        retry_policy: Per-endpoint backoff override (None = settings default).
        delivery_count: Attempts made to this endpoint.
        success_count: Attempts that succeeded.
        failure_count: Attempts that failed for any reason.
        consecutive_failures: Permanent/exhausted failures since the last success.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    url: HttpUrl = Field(description="Endpoint receiving events")
    secret: SecretStr = Field(description="Shared secret for HMAC-SHA256 signatures")
    events: list[str] = Field(default_factory=list, description="Subscribed event types")
    active: bool = Field(default=True, description="Whether the endpoint receives deliveries")
    name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    user_id: str | None = Field(default=None)
    organization_id: str | None = Field(default=None)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float | None = Field(default=None, gt=0.0, le=120.0)
    retry_policy: RetryPolicy | None = Field(default=None)

    delivery_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    last_delivery_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    disabled_at: datetime | None = None
    disabled_reason: str | None = None

    @field_validator("events")
    @classmethod
    def _check_events(cls, events: list[str]) -> list[str]:
        return _validate_event_patterns(events)

    @field_validator("headers")
    @classmethod
    def _check_headers(cls, headers: dict[str, str]) -> dict[str, str]:
        return _validate_headers(headers)

    @field_serializer("secret", when_used="json")
    def _serialize_secret(self, secret: SecretStr, info: SerializationInfo) -> str:
        """Reveal the secret only when the caller asks for it explicitly."""
        if info.context and info.context.get("reveal_secrets"):
            return secret.get_secret_value()
        return str(secret)

    def matches_event(self, event_type: str) -> bool:
        """Check whether the event filter accepts an event type."""
        if not self.events or WILDCARD in self.events:
            return True
        for pattern in self.events:
            if pattern == event_type:
                return True
            if pattern.endswith(".*") and event_type.startswith(pattern[:-1]):
                return True
        return False

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this endpoint is active and subscribed to the event type."""
        return self.active and self.matches_event(event_type)


class WebhookCreate(BaseModel):
    """Input for registering an endpoint.

    ``url`` is a plain string here so that malformed URLs surface as a
    registry validation error rather than failing input parsing.
    """

    model_config = ConfigDict(extra="forbid")

    url: str
    events: list[str] = Field(default_factory=list)
    secret: str | None = Field(default=None, min_length=16)
    name: str | None = None
    description: str | None = None
    user_id: str | None = None
    organization_id: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float | None = None
    retry_policy: RetryPolicy | None = None


class WebhookUpdate(BaseModel):
    """Partial update for an endpoint. Only fields that were set are applied."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    events: list[str] | None = None
    name: str | None = None
    description: str | None = None
    active: bool | None = None
    headers: dict[str, str] | None = None
    timeout_seconds: float | None = None
    retry_policy: RetryPolicy | None = None

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided by the caller."""
        return self.model_dump(exclude_unset=True)


class WebhookFilter(BaseModel):
    """Filter for listing endpoints."""

    model_config = ConfigDict(extra="forbid")

    user_id: str | None = None
    organization_id: str | None = None
    active: bool | None = None
    event_type: str | None = Field(default=None, description="Only endpoints matching this event")
    search: str | None = Field(default=None, description="Case-insensitive match on name or URL")
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


__all__ = [
    "RESERVED_HEADERS",
    "WILDCARD",
    "WebhookCreate",
    "WebhookEndpoint",
    "WebhookFilter",
    "WebhookUpdate",
]
