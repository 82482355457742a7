"""Endpoint storage operations.

Owns the ``webhook_endpoints`` collection. All writes to one endpoint go
through its row lock, so counter increments never interleave with
configuration updates.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from hookrelay.models import WebhookEndpoint, WebhookFilter, utc_now

from .retry import storage_retry

if TYPE_CHECKING:
    from qdrant_client import AsyncQdrantClient


class EndpointMixin:
    """Mixin providing endpoint operations for WebhookStorage.

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

    @storage_retry
    async def _upsert_endpoint(self, endpoint: WebhookEndpoint) -> None:
        await self.client.upsert(
            collection_name=self._collection_name("endpoints"),
            points=[self._point(endpoint.id, endpoint)],
        )

    async def store_endpoint(self, endpoint: WebhookEndpoint) -> str:
        """Insert or replace an endpoint.

        Args:
            endpoint: WebhookEndpoint to store.

        Returns:
            The endpoint ID.
        """
        async with self._row_lock(endpoint.id):
            await self._upsert_endpoint(endpoint)
        return endpoint.id

    @storage_retry
    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        """Get an endpoint by ID, or None if it does not exist."""
        results = await self.client.retrieve(
            collection_name=self._collection_name("endpoints"),
            ids=[self._point_id(endpoint_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None

        endpoint: WebhookEndpoint = self._payload_to_model(results[0].payload, WebhookEndpoint)
        return endpoint

    @storage_retry
    async def list_endpoints(self, query: WebhookFilter | None = None) -> list[WebhookEndpoint]:
        """List endpoints matching a filter, oldest first.

        Equality filters run in Qdrant; event matching and free-text search
        are applied to the fetched rows.
        """
        query = query or WebhookFilter()

        conditions: list[models.Condition] = []
        if query.user_id is not None:
            conditions.append(
                models.FieldCondition(key="user_id", match=models.MatchValue(value=query.user_id))
            )
        if query.organization_id is not None:
            conditions.append(
                models.FieldCondition(
                    key="organization_id",
                    match=models.MatchValue(value=query.organization_id),
                )
            )
        if query.active is not None:
            conditions.append(
                models.FieldCondition(key="active", match=models.MatchValue(value=query.active))
            )

        payloads = await self._scroll_all(
            "endpoints",
            models.Filter(must=conditions) if conditions else None,
        )
        endpoints: list[WebhookEndpoint] = [
            self._payload_to_model(p, WebhookEndpoint) for p in payloads
        ]

        if query.event_type is not None:
            endpoints = [e for e in endpoints if e.matches_event(query.event_type)]
        if query.search:
            needle = query.search.lower()
            endpoints = [
                e
                for e in endpoints
                if needle in str(e.url).lower() or (e.name and needle in e.name.lower())
            ]

        endpoints.sort(key=lambda e: (e.created_at, e.id))
        return endpoints[query.offset : query.offset + query.limit]

    async def update_endpoint(self, endpoint_id: str, **changes: Any) -> WebhookEndpoint | None:
        """Apply field changes to an endpoint.

        The merged record is re-validated before it is written.

        Returns:
            Updated WebhookEndpoint or None if not found.

        Raises:
            pydantic.ValidationError: If the changes produce an invalid endpoint.
        """
        async with self._row_lock(endpoint_id):
            endpoint = await self.get_endpoint(endpoint_id)
            if endpoint is None:
                return None

            data = endpoint.model_dump(context={"reveal_secrets": True})
            data["secret"] = endpoint.secret.get_secret_value()
            data.update(changes)
            data["updated_at"] = utc_now()
            updated = WebhookEndpoint.model_validate(data)

            await self._upsert_endpoint(updated)
            return updated

    async def record_endpoint_outcome(
        self,
        endpoint_id: str,
        *,
        succeeded: bool,
        counts_as_failure_streak: bool,
        at: datetime | None = None,
    ) -> WebhookEndpoint | None:
        """Increment delivery counters for one attempt outcome.

        Runs as a single-row critical section: concurrent deliveries to the
        same endpoint each see the previous increment.

        Args:
            endpoint_id: Endpoint the attempt targeted.
            succeeded: Whether the attempt succeeded.
            counts_as_failure_streak: Whether the failure closed its delivery
                (permanent or exhausted) and extends the consecutive-failure streak.
            at: Time of the outcome. Defaults to now.

        Returns:
            Updated WebhookEndpoint or None if the endpoint no longer exists.
        """
        at = at or utc_now()
        async with self._row_lock(endpoint_id):
            endpoint = await self.get_endpoint(endpoint_id)
            if endpoint is None:
                return None

            endpoint.delivery_count += 1
            endpoint.last_delivery_at = at
            if succeeded:
                endpoint.success_count += 1
                endpoint.consecutive_failures = 0
                endpoint.last_success_at = at
            else:
                endpoint.failure_count += 1
                endpoint.last_failure_at = at
                if counts_as_failure_streak:
                    endpoint.consecutive_failures += 1

            await self._upsert_endpoint(endpoint)
            return endpoint

    @storage_retry
    async def get_endpoints_for_event(self, event_type: str) -> list[WebhookEndpoint]:
        """Get every active endpoint subscribed to an event type.

        Unlike list_endpoints this is not paginated; fan-out must reach all
        subscribers.
        """
        payloads = await self._scroll_all(
            "endpoints",
            models.Filter(
                must=[models.FieldCondition(key="active", match=models.MatchValue(value=True))]
            ),
        )
        endpoints: list[WebhookEndpoint] = [
            self._payload_to_model(p, WebhookEndpoint) for p in payloads
        ]
        matching = [e for e in endpoints if e.subscribes_to(event_type)]
        matching.sort(key=lambda e: (e.created_at, e.id))
        return matching
