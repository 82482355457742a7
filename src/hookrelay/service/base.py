"""Core HookRelay service layer.

This module provides the WebhookService that combines storage, signing,
dispatch and retry scheduling into one facade.

Example:
    ```python
    from hookrelay.models import Event
    from hookrelay.service import WebhookService

    async with WebhookService.create() as service:
        created = await service.create_webhook(
            {"url": "https://example.com/hooks", "events": ["invoice.*"]}
        )
        result = await service.deliver_event(
            created.webhook_id,
            Event(type="invoice.created", data={"invoice_id": "inv_1"}),
        )
        print(result.success, result.retryable)
    ```
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from hookrelay.config import Settings
from hookrelay.logging import get_logger
from hookrelay.storage import WebhookStorage
from hookrelay.webhooks import (
    Dispatcher,
    EndpointLimiter,
    EndpointRegistry,
    HttpxTransport,
    RetryScheduler,
    RetryWorker,
    TaskPool,
    Transport,
    compute_signature,
    verify_signature,
)

from .delivery import DeliveryMixin
from .endpoints import EndpointOpsMixin

logger = get_logger(__name__)


@dataclass
class WebhookService(EndpointOpsMixin, DeliveryMixin):
    """High-level webhook delivery service.

    This service provides a simple interface for:
    - create_webhook(): Register an endpoint and receive its secret
    - deliver_event(): Sign and send an event, retrying on transient failure
    - test_webhook(): Send a one-off signed verification request
    - retry_delivery(): Re-run a failed delivery
    - generate_signature() / verify_signature(): HMAC helpers for callers

    Uses dependency injection for storage and transport, making it easy to
    test and configure.

    Attributes:
        storage: Storage backend (Qdrant).
        transport: Outbound HTTP capability.
        settings: Configuration settings.
        uniform: Random source for retry jitter.
    """

    storage: WebhookStorage
    transport: Transport
    settings: Settings
    uniform: Callable[[float, float], float] = field(default=random.uniform, repr=False)

    registry: EndpointRegistry = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    dispatcher: Dispatcher = field(init=False, repr=False)
    pool: TaskPool = field(init=False, repr=False)
    _worker: RetryWorker | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        """Wire the delivery components from settings."""
        self.registry = EndpointRegistry(self.storage)
        self.scheduler = RetryScheduler(
            self.storage,
            default_policy=self.settings.retry_policy,
            uniform=self.uniform,
        )
        self.dispatcher = Dispatcher(
            self.storage,
            self.transport,
            self.scheduler,
            limiter=EndpointLimiter(
                max_concurrent=self.settings.max_concurrent_deliveries,
                per_endpoint=self.settings.max_in_flight_per_endpoint,
            ),
            default_timeout_seconds=self.settings.request_timeout_seconds,
            response_body_limit=self.settings.response_body_limit,
            auto_disable_threshold=self.settings.auto_disable_threshold,
        )
        self.pool = TaskPool(max_workers=self.settings.background_pool_size)

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured WebhookService instance.

        Example:
            ```python
            # Local mode, no Qdrant server needed
            settings = Settings(qdrant_url=":memory:")
            async with WebhookService.create(settings) as service:
                ...
            ```
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=WebhookStorage(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
            ),
            transport=HttpxTransport(response_body_limit=settings.response_body_limit),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize the service (storage collections, etc.)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop background work, then release the transport and storage."""
        await self.stop_worker()
        await self.pool.close()
        await self.transport.aclose()
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    def start_worker(self, interval_seconds: float | None = None) -> RetryWorker:
        """Start processing retries in the background."""
        if self._worker is None:
            self._worker = RetryWorker(
                self.process_retries,
                self.reclaim_stale,
                interval_seconds=interval_seconds or self.settings.retry_poll_interval_seconds,
            )
        self._worker.start()
        return self._worker

    async def stop_worker(self) -> None:
        if self._worker is not None:
            await self._worker.stop()
            self._worker = None

    @staticmethod
    def generate_signature(payload: str | bytes, secret: str) -> str:
        """Sign a payload the way deliveries are signed."""
        return compute_signature(payload, secret)

    @staticmethod
    def verify_signature(payload: str | bytes, signature: str, secret: str) -> bool:
        """Check a signature produced by generate_signature. Never raises."""
        return verify_signature(payload, signature, secret)


__all__ = ["WebhookService"]
