"""Tests for endpoint registration and lifecycle."""

from __future__ import annotations

import pytest

from hookrelay.config import RetryPolicy
from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.models import WebhookCreate, WebhookFilter, WebhookUpdate
from hookrelay.storage import WebhookStorage
from hookrelay.webhooks.registry import EndpointRegistry


@pytest.fixture
def registry(storage: WebhookStorage) -> EndpointRegistry:
    return EndpointRegistry(storage)


class TestCreate:
    """Tests for EndpointRegistry.create."""

    async def test_generates_secret(self, registry: EndpointRegistry) -> None:
        endpoint = await registry.create(WebhookCreate(url="https://example.com/hook"))
        secret = endpoint.secret.get_secret_value()
        assert len(secret) == 64
        int(secret, 16)

    async def test_keeps_supplied_secret(self, registry: EndpointRegistry) -> None:
        endpoint = await registry.create(
            {"url": "https://example.com/hook", "secret": "my_own_secret_value"}
        )
        assert endpoint.secret.get_secret_value() == "my_own_secret_value"

    async def test_persists(self, registry: EndpointRegistry, storage: WebhookStorage) -> None:
        endpoint = await registry.create(
            {
                "url": "https://example.com/hook",
                "events": ["invoice.created"],
                "name": "Billing",
                "organization_id": "org_1",
                "headers": {"Authorization": "Bearer abc"},
                "timeout_seconds": 3.0,
                "retry_policy": RetryPolicy(max_attempts=5),
            }
        )
        loaded = await storage.get_endpoint(endpoint.id)
        assert loaded is not None
        assert loaded.name == "Billing"
        assert loaded.headers == {"Authorization": "Bearer abc"}
        assert loaded.timeout_seconds == 3.0
        assert loaded.retry_policy is not None
        assert loaded.retry_policy.max_attempts == 5

    @pytest.mark.parametrize(
        "url", ["invalid-url", "ftp://example.com/x", "example.com/hook", "", "http://"]
    )
    async def test_invalid_url(self, registry: EndpointRegistry, url: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await registry.create({"url": url})
        assert exc_info.value.field == "url"
        assert exc_info.value.reason == "Invalid URL"

    async def test_invalid_event(self, registry: EndpointRegistry) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await registry.create({"url": "https://example.com/hook", "events": ["no spaces"]})
        assert exc_info.value.field == "events"

    async def test_short_secret(self, registry: EndpointRegistry) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await registry.create({"url": "https://example.com/hook", "secret": "short"})
        assert exc_info.value.field == "secret"

    async def test_invalid_url_not_stored(
        self, registry: EndpointRegistry, storage: WebhookStorage
    ) -> None:
        with pytest.raises(ValidationError):
            await registry.create({"url": "invalid-url"})
        assert await storage.list_endpoints() == []

    async def test_duplicate_url_gets_distinct_ids(self, registry: EndpointRegistry) -> None:
        first = await registry.create({"url": "https://example.com/hook"})
        second = await registry.create({"url": "https://example.com/hook"})
        assert first.id != second.id
        assert len(await registry.list()) == 2


class TestLifecycle:
    """Tests for get/update/disable/enable/rotate."""

    async def test_get_missing(self, registry: EndpointRegistry) -> None:
        with pytest.raises(NotFoundError):
            await registry.get("whk_missing")

    async def test_update_fields(self, registry: EndpointRegistry) -> None:
        endpoint = await registry.create({"url": "https://example.com/hook"})
        updated = await registry.update(
            endpoint.id, WebhookUpdate(url="https://new.example.com/hook", events=["a.b"])
        )
        assert str(updated.url) == "https://new.example.com/hook"
        assert updated.events == ["a.b"]

    async def test_update_rejects_invalid_url(self, registry: EndpointRegistry) -> None:
        endpoint = await registry.create({"url": "https://example.com/hook"})
        with pytest.raises(ValidationError) as exc_info:
            await registry.update(endpoint.id, WebhookUpdate(url="not a url"))
        assert exc_info.value.field == "url"

        unchanged = await registry.get(endpoint.id)
        assert str(unchanged.url) == "https://example.com/hook"

    async def test_update_missing(self, registry: EndpointRegistry) -> None:
        with pytest.raises(NotFoundError):
            await registry.update("whk_missing", WebhookUpdate(name="x"))

    async def test_disable_and_enable(self, registry: EndpointRegistry) -> None:
        endpoint = await registry.create({"url": "https://example.com/hook"})

        disabled = await registry.disable(endpoint.id, "Maintenance")
        assert disabled.active is False
        assert disabled.disabled_reason == "Maintenance"
        assert disabled.disabled_at is not None

        enabled = await registry.enable(endpoint.id)
        assert enabled.active is True
        assert enabled.disabled_reason is None
        assert enabled.consecutive_failures == 0

    async def test_disable_missing(self, registry: EndpointRegistry) -> None:
        with pytest.raises(NotFoundError):
            await registry.disable("whk_missing", "x")

    async def test_rotate_secret(self, registry: EndpointRegistry) -> None:
        endpoint = await registry.create({"url": "https://example.com/hook"})
        old_secret = endpoint.secret.get_secret_value()

        updated, new_secret = await registry.rotate_secret(endpoint.id)
        assert new_secret != old_secret
        assert updated.secret.get_secret_value() == new_secret

        loaded = await registry.get(endpoint.id)
        assert loaded.secret.get_secret_value() == new_secret

    async def test_list_with_filter(self, registry: EndpointRegistry) -> None:
        await registry.create({"url": "https://a.example.com", "user_id": "user_1"})
        await registry.create({"url": "https://b.example.com", "user_id": "user_2"})

        result = await registry.list(WebhookFilter(user_id="user_1"))
        assert len(result) == 1
        assert result[0].user_id == "user_1"
