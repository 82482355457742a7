"""HookRelay: signed webhook delivery with retries and an audit trail.

HookRelay registers outbound webhook endpoints, signs event payloads with
HMAC-SHA256, delivers them over HTTP and retries transient failures with
exponential backoff. Every attempt is recorded.

Example:
    ```python
    from hookrelay import Event, WebhookService

    async with WebhookService.create() as service:
        created = await service.create_webhook({"url": "https://example.com/hooks"})
        await service.deliver_event(created.webhook_id, Event(type="invoice.paid"))
    ```
"""

from .config import RetryPolicy, Settings
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    HookRelayError,
    InvalidStateError,
    NotFoundError,
    PermanentDeliveryError,
    StorageError,
    TransientDeliveryError,
    ValidationError,
)
from .models import DeliveryAttempt, DeliveryStatus, Event, WebhookEndpoint
from .service import WebhookService
from .webhooks import compute_signature, generate_secret, verify_signature

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Service
    "WebhookService",
    # Configuration
    "RetryPolicy",
    "Settings",
    # Models
    "DeliveryAttempt",
    "DeliveryStatus",
    "Event",
    "WebhookEndpoint",
    # Signing
    "compute_signature",
    "generate_secret",
    "verify_signature",
    # Exceptions
    "ConfigurationError",
    "DeliveryError",
    "HookRelayError",
    "InvalidStateError",
    "NotFoundError",
    "PermanentDeliveryError",
    "StorageError",
    "TransientDeliveryError",
    "ValidationError",
]
