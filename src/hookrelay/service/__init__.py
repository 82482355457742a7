"""HookRelay service layer.

Provides the high-level WebhookService facade.

Example:
    ```python
    from hookrelay.service import WebhookService

    async with WebhookService.create() as service:
        result = await service.create_webhook({"url": "https://example.com/hooks"})
    ```
"""

from .base import WebhookService
from .delivery import INACTIVE_ERROR, NOT_FOUND_ERROR, DeliveryMixin
from .endpoints import EndpointOpsMixin

__all__ = [
    "INACTIVE_ERROR",
    "NOT_FOUND_ERROR",
    "DeliveryMixin",
    "EndpointOpsMixin",
    "WebhookService",
]
