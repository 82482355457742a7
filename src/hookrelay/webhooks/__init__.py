"""Webhook delivery components.

Provides signing, endpoint registration, dispatch, retry scheduling and
the background retry worker. Most callers use ``hookrelay.service.WebhookService``
instead of wiring these directly.

Example:
    ```python
    from hookrelay.webhooks import compute_signature, verify_signature

    signature = compute_signature(body, secret)
    assert verify_signature(body, signature, secret)
    ```
"""

from .dispatcher import DispatchOutcome, Dispatcher, build_headers, classify_status
from .pool import EndpointLimiter, TaskPool
from .registry import EndpointRegistry
from .scheduler import RetryScheduler, compute_delay
from .signature import SIGNATURE_HEADER, compute_signature, generate_secret, verify_signature
from .transport import HttpxTransport, OutboundRequest, Transport, TransportResponse
from .worker import RetryWorker

__all__ = [
    # Signing
    "SIGNATURE_HEADER",
    "compute_signature",
    "generate_secret",
    "verify_signature",
    # Registry
    "EndpointRegistry",
    # Transport
    "HttpxTransport",
    "OutboundRequest",
    "Transport",
    "TransportResponse",
    # Dispatch
    "DispatchOutcome",
    "Dispatcher",
    "build_headers",
    "classify_status",
    # Retries
    "RetryScheduler",
    "RetryWorker",
    "compute_delay",
    # Concurrency
    "EndpointLimiter",
    "TaskPool",
]
