"""Endpoint management mixin for WebhookService.

Provides registration, lookup, lifecycle and statistics for endpoints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pydantic

from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.models import (
    CreateWebhookResult,
    WebhookCreate,
    WebhookEndpoint,
    WebhookFilter,
    WebhookStats,
    WebhookUpdate,
)
from hookrelay.webhooks.registry import to_validation_error

if TYPE_CHECKING:
    from hookrelay.storage import WebhookStorage
    from hookrelay.webhooks import EndpointRegistry

DELETED_REASON = "Deleted"


class EndpointOpsMixin:
    """Mixin providing endpoint operations.

    Expects these attributes from the base class:
    - storage: WebhookStorage
    - registry: EndpointRegistry
    """

    storage: WebhookStorage
    registry: EndpointRegistry

    async def create_webhook(self, data: WebhookCreate | dict[str, Any]) -> CreateWebhookResult:
        """Register a webhook endpoint.

        Validation problems are reported in the result instead of raised, so
        callers can show them to the user directly.

        Args:
            data: Endpoint configuration (url, events, optional secret, ...).

        Returns:
            CreateWebhookResult with the new ID and plaintext secret, or the
            error and offending field.

        Example:
            ```python
            result = await service.create_webhook(
                {"url": "https://example.com/hooks", "events": ["invoice.created"]}
            )
            if result.success:
                print(result.webhook_id, result.secret)
            ```
        """
        try:
            endpoint = await self.registry.create(data)
        except ValidationError as e:
            return CreateWebhookResult(success=False, error=e.reason, field=e.field)

        return CreateWebhookResult(
            success=True,
            webhook_id=endpoint.id,
            secret=endpoint.secret.get_secret_value(),
        )

    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None:
        return await self.storage.get_endpoint(webhook_id)

    async def list_webhooks(
        self, query: WebhookFilter | None = None, **filters: Any
    ) -> list[WebhookEndpoint]:
        """List endpoints.

        Args:
            query: Filter object. Keyword filters build one when omitted,
                e.g. ``list_webhooks(organization_id="org_1", active=True)``.
        """
        if query is None:
            try:
                query = WebhookFilter(**filters)
            except pydantic.ValidationError as e:
                raise to_validation_error(e) from e
        return await self.registry.list(query)

    async def update_webhook(
        self, webhook_id: str, changes: WebhookUpdate | dict[str, Any]
    ) -> WebhookEndpoint:
        """Apply a partial update to an endpoint.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If the update is invalid.
        """
        if not isinstance(changes, WebhookUpdate):
            try:
                changes = WebhookUpdate.model_validate(changes)
            except pydantic.ValidationError as e:
                raise to_validation_error(e) from e
        return await self.registry.update(webhook_id, changes)

    async def delete_webhook(self, webhook_id: str) -> bool:
        """Delete an endpoint.

        Endpoints are disabled rather than removed so their delivery history
        stays intact. Pending retries are cancelled when they come due.

        Returns:
            True if the endpoint existed.
        """
        try:
            await self.registry.disable(webhook_id, DELETED_REASON)
        except NotFoundError:
            return False
        return True

    async def enable_webhook(self, webhook_id: str) -> WebhookEndpoint:
        return await self.registry.enable(webhook_id)

    async def rotate_secret(self, webhook_id: str) -> str:
        """Issue a new signing secret. Later attempts, including retries, use it.

        Returns:
            The new plaintext secret.
        """
        _, secret = await self.registry.rotate_secret(webhook_id)
        return secret

    async def get_webhook_stats(self, webhook_id: str) -> WebhookStats:
        """Delivery statistics for one endpoint.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        endpoint = await self.registry.get(webhook_id)
        pending = await self.storage.count_pending(webhook_id)
        success_rate = (
            endpoint.success_count / endpoint.delivery_count if endpoint.delivery_count else 0.0
        )
        return WebhookStats(
            endpoint_id=endpoint.id,
            active=endpoint.active,
            delivery_count=endpoint.delivery_count,
            success_count=endpoint.success_count,
            failure_count=endpoint.failure_count,
            consecutive_failures=endpoint.consecutive_failures,
            success_rate=success_rate,
            pending_retries=pending,
            last_delivery_at=endpoint.last_delivery_at,
            last_success_at=endpoint.last_success_at,
            last_failure_at=endpoint.last_failure_at,
        )


__all__ = ["EndpointOpsMixin"]
