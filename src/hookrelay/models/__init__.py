"""Data models for HookRelay.

Endpoints:
    - WebhookEndpoint: Registered subscriber URL, secret and event filter
    - WebhookCreate / WebhookUpdate / WebhookFilter: Registry inputs

Deliveries:
    - DeliveryAttempt: One HTTP try, grouped by delivery_id
    - DeliveryStatus: Attempt lifecycle

Events:
    - Event: Opaque typed payload supplied by the application

Results:
    - CreateWebhookResult, DeliverEventResult, TestWebhookResult,
      RetryDeliveryResult, WebhookStats
"""

from .attempt import TERMINAL_STATUSES, DeliveryAttempt, DeliveryStatus, hash_payload
from .base import generate_id, utc_now
from .endpoint import (
    RESERVED_HEADERS,
    WILDCARD,
    WebhookCreate,
    WebhookEndpoint,
    WebhookFilter,
    WebhookUpdate,
)
from .event import TEST_EVENT_TYPE, Event, canonical_json
from .results import (
    CreateWebhookResult,
    DeliverEventResult,
    RetryDeliveryResult,
    TestWebhookResult,
    WebhookStats,
)

__all__ = [
    # Base helpers
    "generate_id",
    "utc_now",
    # Endpoints
    "RESERVED_HEADERS",
    "WILDCARD",
    "WebhookCreate",
    "WebhookEndpoint",
    "WebhookFilter",
    "WebhookUpdate",
    # Deliveries
    "DeliveryAttempt",
    "DeliveryStatus",
    "TERMINAL_STATUSES",
    "hash_payload",
    # Events
    "Event",
    "TEST_EVENT_TYPE",
    "canonical_json",
    # Results
    "CreateWebhookResult",
    "DeliverEventResult",
    "RetryDeliveryResult",
    "TestWebhookResult",
    "WebhookStats",
]
