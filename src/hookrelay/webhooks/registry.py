"""Endpoint registration and lifecycle.

The registry validates endpoint configuration before anything reaches
storage. Invalid input raises ``hookrelay.exceptions.ValidationError``
carrying the offending field.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import pydantic

from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.models import WebhookCreate, WebhookEndpoint, WebhookFilter, WebhookUpdate, utc_now

from .signature import generate_secret

if TYPE_CHECKING:
    from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)

# Human-readable messages for fields whose pydantic errors are too technical
FIELD_MESSAGES = {
    "url": "Invalid URL",
}


def to_validation_error(exc: pydantic.ValidationError) -> ValidationError:
    """Reduce a pydantic error to the first offending field."""
    first = exc.errors()[0]
    loc = first.get("loc") or ("input",)
    field_name = str(loc[0])
    message = FIELD_MESSAGES.get(field_name, first.get("msg", "Invalid value"))
    return ValidationError(field_name, message)


class EndpointRegistry:
    """Creates, looks up and manages webhook endpoints.

    Example:
        ```python
        registry = EndpointRegistry(storage)
        endpoint = await registry.create(
            WebhookCreate(url="https://example.com/hook", events=["invoice.*"])
        )
        ```
    """

    def __init__(self, storage: WebhookStorage) -> None:
        self._storage = storage

    async def create(self, data: WebhookCreate | dict[str, Any]) -> WebhookEndpoint:
        """Validate and register a new endpoint.

        A random secret is generated when none is supplied. Registering the
        same URL twice creates two independent endpoints.

        Args:
            data: Endpoint configuration.

        Returns:
            The stored WebhookEndpoint.

        Raises:
            ValidationError: If the URL is not an absolute http(s) URL, or any
                other field is invalid.
        """
        try:
            if not isinstance(data, WebhookCreate):
                data = WebhookCreate.model_validate(data)
            fields = data.model_dump(exclude_none=True)
            fields["secret"] = data.secret or generate_secret()
            endpoint = WebhookEndpoint.model_validate(fields)
        except pydantic.ValidationError as e:
            raise to_validation_error(e) from e

        await self._storage.store_endpoint(endpoint)
        logger.info("Registered webhook %s for %s", endpoint.id, endpoint.url)
        return endpoint

    async def get(self, endpoint_id: str) -> WebhookEndpoint:
        """Get an endpoint.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        endpoint = await self._storage.get_endpoint(endpoint_id)
        if endpoint is None:
            raise NotFoundError("webhook", endpoint_id)
        return endpoint

    async def list(self, query: WebhookFilter | None = None) -> list[WebhookEndpoint]:
        return await self._storage.list_endpoints(query)

    async def update(self, endpoint_id: str, changes: WebhookUpdate) -> WebhookEndpoint:
        """Apply a partial update, re-validating URL and events.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If the result would be invalid.
        """
        fields = changes.changes()
        if fields.get("active") is True:
            fields.update(disabled_at=None, disabled_reason=None, consecutive_failures=0)
        elif fields.get("active") is False:
            fields.update(disabled_at=utc_now(), disabled_reason="Disabled by user")

        try:
            updated = await self._storage.update_endpoint(endpoint_id, **fields)
        except pydantic.ValidationError as e:
            raise to_validation_error(e) from e

        if updated is None:
            raise NotFoundError("webhook", endpoint_id)
        logger.info("Updated webhook %s (%s)", endpoint_id, ", ".join(sorted(fields)))
        return updated

    async def disable(self, endpoint_id: str, reason: str) -> WebhookEndpoint:
        """Stop deliveries to an endpoint. Pending retries resolve lazily.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        updated = await self._storage.update_endpoint(
            endpoint_id,
            active=False,
            disabled_at=utc_now(),
            disabled_reason=reason,
        )
        if updated is None:
            raise NotFoundError("webhook", endpoint_id)
        logger.info("Disabled webhook %s: %s", endpoint_id, reason)
        return updated

    async def enable(self, endpoint_id: str) -> WebhookEndpoint:
        """Re-activate an endpoint and reset its failure streak.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        updated = await self._storage.update_endpoint(
            endpoint_id,
            active=True,
            disabled_at=None,
            disabled_reason=None,
            consecutive_failures=0,
        )
        if updated is None:
            raise NotFoundError("webhook", endpoint_id)
        logger.info("Enabled webhook %s", endpoint_id)
        return updated

    async def rotate_secret(self, endpoint_id: str) -> tuple[WebhookEndpoint, str]:
        """Replace the signing secret.

        Returns:
            Tuple of (updated endpoint, new plaintext secret).

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        secret = generate_secret()
        updated = await self._storage.update_endpoint(endpoint_id, secret=secret)
        if updated is None:
            raise NotFoundError("webhook", endpoint_id)
        logger.info("Rotated secret for webhook %s", endpoint_id)
        return updated, secret


__all__ = ["EndpointRegistry", "to_validation_error"]
