"""Unit tests for HookRelay data models."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from hookrelay.config import RetryPolicy
from hookrelay.models import (
    DeliveryAttempt,
    DeliveryStatus,
    Event,
    WebhookEndpoint,
    WebhookUpdate,
    canonical_json,
    generate_id,
    hash_payload,
)


class TestGenerateId:
    def test_prefix_and_length(self) -> None:
        value = generate_id("whk")
        assert value.startswith("whk_")
        assert len(value) == len("whk_") + 12

    def test_unique(self) -> None:
        assert generate_id("dlv") != generate_id("dlv")


class TestWebhookEndpoint:
    """Tests for WebhookEndpoint model."""

    def test_defaults(self) -> None:
        endpoint = WebhookEndpoint(url="https://example.com/hook", secret="s" * 32)
        assert endpoint.id.startswith("whk_")
        assert endpoint.active is True
        assert endpoint.events == []
        assert endpoint.delivery_count == 0
        assert endpoint.consecutive_failures == 0
        assert endpoint.timeout_seconds is None

    @pytest.mark.parametrize(
        "url", ["invalid-url", "ftp://example.com/hook", "/relative/path", "https://"]
    )
    def test_rejects_invalid_url(self, url: str) -> None:
        with pytest.raises(ValidationError):
            WebhookEndpoint(url=url, secret="s" * 32)

    def test_secret_masked_in_repr_and_json(self) -> None:
        """The secret should never appear in repr or default JSON output."""
        endpoint = WebhookEndpoint(url="https://example.com/hook", secret="supersecretvalue123")
        assert "supersecretvalue123" not in repr(endpoint)
        assert "supersecretvalue123" not in endpoint.model_dump_json()

    def test_secret_revealed_with_context(self) -> None:
        endpoint = WebhookEndpoint(url="https://example.com/hook", secret="supersecretvalue123")
        data = endpoint.model_dump(mode="json", context={"reveal_secrets": True})
        assert data["secret"] == "supersecretvalue123"

    def test_rejects_reserved_header(self) -> None:
        with pytest.raises(ValidationError):
            WebhookEndpoint(
                url="https://example.com/hook",
                secret="s" * 32,
                headers={"X-Webhook-Signature": "forged"},
            )

    def test_accepts_custom_header(self) -> None:
        endpoint = WebhookEndpoint(
            url="https://example.com/hook",
            secret="s" * 32,
            headers={"Authorization": "Bearer token"},
        )
        assert endpoint.headers == {"Authorization": "Bearer token"}

    def test_rejects_invalid_event(self) -> None:
        with pytest.raises(ValidationError):
            WebhookEndpoint(url="https://example.com/hook", secret="s" * 32, events=["bad event"])

    def test_dedupes_events(self) -> None:
        endpoint = WebhookEndpoint(
            url="https://example.com/hook",
            secret="s" * 32,
            events=["invoice.created", "invoice.created", "invoice.paid"],
        )
        assert endpoint.events == ["invoice.created", "invoice.paid"]


class TestEventMatching:
    """Tests for endpoint event filters."""

    def make(self, events: list[str], active: bool = True) -> WebhookEndpoint:
        return WebhookEndpoint(
            url="https://example.com/hook", secret="s" * 32, events=events, active=active
        )

    def test_empty_matches_everything(self) -> None:
        assert self.make([]).matches_event("anything.happened")

    def test_wildcard_matches_everything(self) -> None:
        assert self.make(["*"]).matches_event("invoice.created")

    def test_exact_match(self) -> None:
        endpoint = self.make(["invoice.created"])
        assert endpoint.matches_event("invoice.created")
        assert not endpoint.matches_event("invoice.paid")

    def test_prefix_wildcard(self) -> None:
        endpoint = self.make(["invoice.*"])
        assert endpoint.matches_event("invoice.created")
        assert endpoint.matches_event("invoice.line.added")
        assert not endpoint.matches_event("invoices.created")
        assert not endpoint.matches_event("payment.created")

    def test_inactive_does_not_subscribe(self) -> None:
        assert not self.make(["*"], active=False).subscribes_to("invoice.created")


class TestWebhookUpdate:
    def test_changes_only_set_fields(self) -> None:
        update = WebhookUpdate(name="Billing", active=False)
        assert update.changes() == {"name": "Billing", "active": False}

    def test_explicit_none_is_a_change(self) -> None:
        assert WebhookUpdate(description=None).changes() == {"description": None}


class TestDeliveryAttempt:
    """Tests for DeliveryAttempt lifecycle helpers."""

    def make(self, **kwargs) -> DeliveryAttempt:
        defaults = {
            "endpoint_id": "whk_1",
            "event_id": "evt_1",
            "event_type": "invoice.created",
            "payload": '{"a":1}',
        }
        defaults.update(kwargs)
        return DeliveryAttempt(**defaults)

    def test_defaults(self) -> None:
        attempt = self.make()
        assert attempt.id.startswith("att_")
        assert attempt.delivery_id.startswith("dlv_")
        assert attempt.status == DeliveryStatus.PENDING
        assert attempt.attempt_number == 1
        assert attempt.payload_hash == hash_payload('{"a":1}')

    def test_terminal_statuses(self) -> None:
        assert DeliveryStatus.SUCCEEDED.is_terminal
        assert DeliveryStatus.FAILED_PERMANENT.is_terminal
        assert DeliveryStatus.EXHAUSTED.is_terminal
        assert not DeliveryStatus.PENDING.is_terminal
        assert not DeliveryStatus.SENDING.is_terminal
        assert not DeliveryStatus.FAILED_RETRYABLE.is_terminal

    def test_mark_sending(self) -> None:
        attempt = self.make().mark_sending("sha256=abc")
        assert attempt.status == DeliveryStatus.SENDING
        assert attempt.signature == "sha256=abc"
        assert attempt.sent_at is not None

    def test_mark_outcome_truncates_body(self) -> None:
        attempt = self.make().mark_outcome(
            DeliveryStatus.FAILED_RETRYABLE,
            response_status_code=500,
            response_body="x" * 5000,
            body_limit=1000,
        )
        assert attempt.response_body is not None
        assert len(attempt.response_body) == 1000
        assert attempt.completed_at is not None

    def test_mark_exhausted(self) -> None:
        attempt = self.make(attempt_number=3).mark_outcome(
            DeliveryStatus.FAILED_RETRYABLE, error_message="HTTP 503"
        )
        attempt.mark_exhausted()
        assert attempt.status == DeliveryStatus.EXHAUSTED
        assert attempt.error_message == "Max attempts exceeded: HTTP 503"

    def test_has_budget(self) -> None:
        assert self.make(attempt_number=2, max_attempts=3).has_budget
        assert not self.make(attempt_number=3, max_attempts=3).has_budget

    def test_next_attempt(self) -> None:
        first = self.make()
        due = datetime.now(UTC) + timedelta(seconds=2)
        second = first.next_attempt(due)
        assert second.delivery_id == first.delivery_id
        assert second.attempt_number == 2
        assert second.payload == first.payload
        assert second.status == DeliveryStatus.PENDING
        assert second.scheduled_at == due
        assert second.id != first.id


class TestEvent:
    """Tests for Event bodies."""

    def test_body_is_canonical(self) -> None:
        event = Event(
            type="invoice.created",
            data={"b": 2, "a": 1},
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        )
        assert event.to_body() == (
            '{"data":{"a":1,"b":2},"timestamp":"2024-01-01T00:00:00+00:00",'
            '"type":"invoice.created"}'
        )

    def test_naive_timestamp_becomes_utc(self) -> None:
        event = Event(type="x", timestamp=datetime(2024, 1, 1, 12, 0))
        assert event.timestamp.tzinfo == UTC

    def test_body_round_trips_as_json(self) -> None:
        event = Event(type="invoice.created", data={"amount": 12.5, "name": "Zoë"})
        parsed = json.loads(event.to_body())
        assert parsed["data"] == {"amount": 12.5, "name": "Zoë"}
        assert parsed["type"] == "invoice.created"

    def test_for_test(self) -> None:
        event = Event.for_test("whk_1")
        assert event.type == "webhook.test"
        assert event.data["webhook_id"] == "whk_1"

    def test_canonical_json_key_order(self) -> None:
        assert canonical_json({"z": 1, "a": [1, 2]}) == '{"a":[1,2],"z":1}'


class TestRetryPolicy:
    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.base_delay_seconds == 1.0
        assert policy.max_delay_seconds == 600.0
        assert policy.max_attempts == 3
        assert policy.jitter == 0.2

    def test_max_below_base_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay_seconds=10.0, max_delay_seconds=5.0)
