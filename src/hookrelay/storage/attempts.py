"""Delivery attempt storage operations.

Owns the ``webhook_delivery_attempts`` collection. Rows are written by the
dispatcher and scheduler; a delivery's state is its highest attempt_number.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from hookrelay.models import TERMINAL_STATUSES, DeliveryAttempt, DeliveryStatus

from .retry import storage_retry

if TYPE_CHECKING:
    from qdrant_client import AsyncQdrantClient

logger = logging.getLogger(__name__)


def _match(key: str, value: Any) -> models.FieldCondition:
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


class AttemptMixin:
    """Mixin providing delivery attempt operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _point(record_id, model) -> PointStruct
    - _point_id(record_id) -> str
    - _payload_to_model(payload, model_class) -> ModelT
    - _scroll_all(kind, filter, max_records) -> list[dict]
    - _row_lock(record_id) -> async context manager
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _point: Any
    _point_id: Any
    _payload_to_model: Any
    _scroll_all: Any
    _row_lock: Any
    client: AsyncQdrantClient

    def _to_attempts(self, payloads: list[dict[str, Any]]) -> list[DeliveryAttempt]:
        return [self._payload_to_model(p, DeliveryAttempt) for p in payloads]

    @storage_retry
    async def record_attempt(self, attempt: DeliveryAttempt) -> str:
        """Insert or replace an attempt row.

        Args:
            attempt: DeliveryAttempt to store.

        Returns:
            The attempt ID.
        """
        await self.client.upsert(
            collection_name=self._collection_name("attempts"),
            points=[self._point(attempt.id, attempt)],
        )
        return attempt.id

    @storage_retry
    async def get_attempt(self, attempt_id: str) -> DeliveryAttempt | None:
        """Get an attempt by ID, or None if it does not exist."""
        results = await self.client.retrieve(
            collection_name=self._collection_name("attempts"),
            ids=[self._point_id(attempt_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None

        attempt: DeliveryAttempt = self._payload_to_model(results[0].payload, DeliveryAttempt)
        return attempt

    def delivery_lock(self, delivery_id: str) -> AbstractAsyncContextManager[None]:
        """Serialize state changes of one delivery within this process.

        Claiming, re-arming and scheduling a follow-up attempt all hold it, so
        a delivery never has an attempt claimed twice or two attempts with
        the same number.
        """
        return self._row_lock(f"delivery:{delivery_id}")

    async def claim_attempt(
        self, attempt: DeliveryAttempt, now: datetime
    ) -> DeliveryAttempt | None:
        """Move a pending attempt to sending.

        The row is re-read under the delivery lock. Returns None when it is
        gone or no longer pending, so two workers polling the same due list
        never send the same attempt.
        """
        async with self.delivery_lock(attempt.delivery_id):
            current = await self.get_attempt(attempt.id)
            if current is None or current.status != DeliveryStatus.PENDING:
                return None
            current.status = DeliveryStatus.SENDING
            current.sent_at = now
            await self.record_attempt(current)
            return current

    @storage_retry
    async def get_delivery_attempts(self, delivery_id: str) -> list[DeliveryAttempt]:
        """All attempts of one delivery, ordered by attempt_number."""
        payloads = await self._scroll_all(
            "attempts",
            models.Filter(must=[_match("delivery_id", delivery_id)]),
        )
        attempts = self._to_attempts(payloads)
        attempts.sort(key=lambda a: a.attempt_number)
        return attempts

    async def get_latest_attempt(self, delivery_id: str) -> DeliveryAttempt | None:
        """The attempt carrying the delivery's current state."""
        attempts = await self.get_delivery_attempts(delivery_id)
        return attempts[-1] if attempts else None

    @storage_retry
    async def list_attempts(
        self,
        endpoint_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """List attempts, newest first.

        Args:
            endpoint_id: Only attempts to this endpoint.
            status: Only attempts in this status.
            limit: Maximum rows to return.
            offset: Rows to skip.

        Returns:
            Attempts sorted by created_at descending.
        """
        conditions: list[models.Condition] = []
        if endpoint_id is not None:
            conditions.append(_match("endpoint_id", endpoint_id))
        if status is not None:
            conditions.append(_match("status", status.value))

        payloads = await self._scroll_all(
            "attempts",
            models.Filter(must=conditions) if conditions else None,
        )
        attempts = self._to_attempts(payloads)
        attempts.sort(key=lambda a: (a.created_at, a.attempt_number), reverse=True)
        return attempts[offset : offset + limit]

    @storage_retry
    async def get_due_attempts(self, now: datetime, limit: int = 100) -> list[DeliveryAttempt]:
        """Pending attempts whose scheduled time has passed, oldest first."""
        payloads = await self._scroll_all(
            "attempts",
            models.Filter(
                must=[
                    _match("status", DeliveryStatus.PENDING.value),
                    models.FieldCondition(
                        key="scheduled_at_ts",
                        range=models.Range(lte=now.timestamp()),
                    ),
                ]
            ),
        )
        attempts = self._to_attempts(payloads)
        attempts.sort(key=lambda a: a.scheduled_at)
        return attempts[:limit]

    @storage_retry
    async def get_stale_sending(self, cutoff: datetime) -> list[DeliveryAttempt]:
        """Attempts stuck in ``sending`` since before the cutoff."""
        payloads = await self._scroll_all(
            "attempts",
            models.Filter(
                must=[
                    _match("status", DeliveryStatus.SENDING.value),
                    models.FieldCondition(
                        key="sent_at_ts",
                        range=models.Range(lt=cutoff.timestamp()),
                    ),
                ]
            ),
        )
        return self._to_attempts(payloads)

    @storage_retry
    async def count_pending(self, endpoint_id: str | None = None) -> int:
        """Count attempts waiting to be sent."""
        conditions: list[models.Condition] = [_match("status", DeliveryStatus.PENDING.value)]
        if endpoint_id is not None:
            conditions.append(_match("endpoint_id", endpoint_id))

        result = await self.client.count(
            collection_name=self._collection_name("attempts"),
            count_filter=models.Filter(must=conditions),
            exact=True,
        )
        return result.count

    @storage_retry
    async def purge_attempts(self, before: datetime) -> int:
        """Delete terminal attempts completed before a cutoff.

        Pending, sending and retryable rows are never purged.

        Returns:
            Number of rows deleted.
        """
        scroll_filter = models.Filter(
            must=[
                models.FieldCondition(
                    key="status",
                    match=models.MatchAny(any=[s.value for s in TERMINAL_STATUSES]),
                ),
                models.FieldCondition(
                    key="completed_at_ts",
                    range=models.Range(lt=before.timestamp()),
                ),
            ]
        )
        payloads = await self._scroll_all("attempts", scroll_filter)
        if not payloads:
            return 0

        await self.client.delete(
            collection_name=self._collection_name("attempts"),
            points_selector=models.PointIdsList(
                points=[self._point_id(p["id"]) for p in payloads],
            ),
        )
        logger.info("Purged %d delivery attempts completed before %s", len(payloads), before)
        return len(payloads)
