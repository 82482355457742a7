"""Qdrant storage client for HookRelay.

This module provides the WebhookStorage class that combines endpoint and
delivery attempt operations through mixins.

Example:
    ```python
    from hookrelay.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.store_endpoint(endpoint)
        due = await storage.get_due_attempts(utc_now())
    ```
"""

from __future__ import annotations

from .attempts import AttemptMixin
from .base import StorageBase
from .endpoints import EndpointMixin


class WebhookStorage(EndpointMixin, AttemptMixin, StorageBase):
    """Async Qdrant storage for webhook endpoints and delivery attempts.

    This class combines functionality from multiple mixins:
    - EndpointMixin: store_endpoint, get_endpoint, list_endpoints,
      update_endpoint, record_endpoint_outcome
    - AttemptMixin: record_attempt, get_attempt, get_delivery_attempts,
      list_attempts, get_due_attempts, get_stale_sending, count_pending,
      purge_attempts

    Endpoint counter updates are serialized per endpoint within one process.
    Running several engine processes against one Qdrant instance can lose
    counter increments; attempt rows are unaffected.
    """

    async def __aenter__(self) -> WebhookStorage:
        await self.initialize()
        return self


__all__ = ["WebhookStorage"]
