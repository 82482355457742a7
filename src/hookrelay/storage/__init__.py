"""Storage backend for HookRelay.

Endpoints and delivery attempts are persisted in two Qdrant collections,
addressed by payload filters rather than vector search.

Example:
    ```python
    from hookrelay.storage import WebhookStorage

    async with WebhookStorage(url=":memory:") as storage:
        await storage.store_endpoint(endpoint)
    ```
"""

from .base import COLLECTION_NAMES, StorageBase
from .client import WebhookStorage
from .retry import is_transient_storage_error, storage_retry

__all__ = [
    "COLLECTION_NAMES",
    "StorageBase",
    "WebhookStorage",
    "is_transient_storage_error",
    "storage_retry",
]
