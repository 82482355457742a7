"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Iterable
from pathlib import Path

import pytest
from qdrant_client import AsyncQdrantClient

from hookrelay.config import RetryPolicy, Settings
from hookrelay.service import WebhookService
from hookrelay.storage import WebhookStorage
from hookrelay.webhooks.transport import OutboundRequest, TransportResponse

# Add tests directory to path so helpers can be imported from test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))


class FakeTransport:
    """Transport double that records requests and replays scripted outcomes.

    Each scripted item is either a status code, a (status code, body) tuple,
    or an exception instance to raise. Once the script runs out, every
    request answers with ``default_status``.

    Example:
        ```python
        transport = FakeTransport([500, 200])
        # first request gets 500, second 200, the rest 200
        ```
    """

    def __init__(
        self,
        script: Iterable[int | tuple[int, str] | BaseException] = (),
        default_status: int = 200,
    ) -> None:
        self.script = list(script)
        self.default_status = default_status
        self.requests: list[OutboundRequest] = []
        self.closed = False

    def push(self, *items: int | tuple[int, str] | BaseException) -> None:
        self.script.extend(items)

    async def send(self, request: OutboundRequest) -> TransportResponse:
        self.requests.append(request)
        item = self.script.pop(0) if self.script else self.default_status
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, tuple):
            return TransportResponse(status_code=item[0], body=item[1])
        return TransportResponse(status_code=item, body="")

    async def aclose(self) -> None:
        self.closed = True

    @property
    def last(self) -> OutboundRequest:
        return self.requests[-1]


def fixed_uniform(low: float, high: float) -> float:
    """Jitter source that always returns the midpoint (no jitter)."""
    return (low + high) / 2


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: local Qdrant and the default retry policy."""
    return Settings(
        env="test",
        qdrant_url=":memory:",
        collection_prefix="test",
        retry_policy=RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=600.0, max_attempts=3),
        auto_disable_threshold=5,
    )


@pytest.fixture
async def storage():
    """Create an in-memory storage instance for testing.

    Uses qdrant-client's local mode with in-memory storage.
    """
    store = WebhookStorage(prefix="test", client=AsyncQdrantClient(location=":memory:"))
    await store.initialize()

    yield store

    await store.close()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
async def service(storage: WebhookStorage, transport: FakeTransport, test_settings: Settings):
    """WebhookService over in-memory storage and a fake transport."""
    svc = WebhookService(
        storage=storage,
        transport=transport,
        settings=test_settings,
        uniform=fixed_uniform,
    )

    yield svc

    await svc.stop_worker()
    await svc.pool.close()
