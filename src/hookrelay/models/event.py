"""Events handed to the engine by the rest of the application.

The engine treats an event as an opaque typed payload; it only requires
``data`` to be JSON-serializable so the body can be signed.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import generate_id, utc_now

TEST_EVENT_TYPE = "webhook.test"


def canonical_json(value: Any) -> str:
    """Serialize to the canonical form used for signing.

    Keys are sorted and separators are compact, so identical data always
    produces identical bytes.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


class Event(BaseModel):
    """A domain event to deliver.

    Attributes:
        id: Unique identifier (not part of the body).
        type: Event type, e.g. "invoice.created".
        data: JSON-serializable payload.
        timestamp: When the event occurred (UTC).
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    type: str = Field(min_length=1, max_length=200)
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def to_body(self) -> str:
        """Render the request body sent to subscribers."""
        return canonical_json(
            {
                "type": self.type,
                "data": self.data,
                "timestamp": self.timestamp.isoformat(),
            }
        )

    @classmethod
    def for_test(cls, endpoint_id: str) -> Event:
        """Create the default payload used to verify an endpoint."""
        return cls(
            type=TEST_EVENT_TYPE,
            data={
                "message": "This is a test webhook delivery",
                "webhook_id": endpoint_id,
            },
        )


__all__ = ["Event", "TEST_EVENT_TYPE", "canonical_json"]
