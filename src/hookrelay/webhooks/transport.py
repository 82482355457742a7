"""Outbound HTTP transport.

The dispatcher depends on the ``Transport`` protocol only, so deliveries can
be exercised against fakes or ``httpx.MockTransport`` in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx

from hookrelay.config import settings
from hookrelay.exceptions import PermanentDeliveryError, TransientDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundRequest:
    """A signed POST ready to be sent."""

    url: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class TransportResponse:
    """What the endpoint answered."""

    status_code: int
    body: str = ""


@runtime_checkable
class Transport(Protocol):
    """Sends one request and returns the response.

    Implementations raise ``TransientDeliveryError`` when no response was
    received (timeout, refused connection, DNS failure) and
    ``PermanentDeliveryError`` when the request can never be sent (unsupported
    scheme, malformed URL). Any HTTP status, including errors, is returned
    as a ``TransportResponse``.
    """

    async def send(self, request: OutboundRequest) -> TransportResponse: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient``.

    Redirects are not followed; a 3xx answer is returned to the caller as is.
    The response body is streamed and read only up to ``response_body_limit``
    bytes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        response_body_limit: int | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            client: Pre-built client. Tests pass one wired to
                ``httpx.MockTransport``. A client created here is closed by
                ``aclose``; a supplied one is left to its owner.
            response_body_limit: Bytes of response body read. Defaults to
                settings.response_body_limit.
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=False)
        self._body_limit = (
            response_body_limit
            if response_body_limit is not None
            else settings.response_body_limit
        )

    async def send(self, request: OutboundRequest) -> TransportResponse:
        try:
            async with self._client.stream(
                "POST",
                request.url,
                content=request.body,
                headers=request.headers,
                timeout=request.timeout_seconds,
                follow_redirects=False,
            ) as response:
                body = await self._read_body(response)
        except httpx.TimeoutException as e:
            raise TransientDeliveryError(f"Request timeout after {request.timeout_seconds}s") from e
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise PermanentDeliveryError(f"Invalid endpoint URL: {e}") from e
        except httpx.RequestError as e:
            raise TransientDeliveryError(f"Connection error: {e}") from e

        return TransportResponse(status_code=response.status_code, body=body)

    async def _read_body(self, response: httpx.Response) -> str:
        """Read at most ``_body_limit`` bytes; the rest is never downloaded."""
        chunks: list[bytes] = []
        size = 0
        if self._body_limit > 0:
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                size += len(chunk)
                if size >= self._body_limit:
                    break
        raw = b"".join(chunks)[: self._body_limit]
        try:
            return raw.decode(response.charset_encoding or "utf-8", errors="replace")
        except LookupError:
            return raw.decode("utf-8", errors="replace")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpxTransport", "OutboundRequest", "Transport", "TransportResponse"]
