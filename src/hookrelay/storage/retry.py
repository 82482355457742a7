"""Retry utilities for storage operations.

Transient Qdrant failures (connection drops, timeouts, 5xx) are retried with
exponential backoff. Anything else propagates immediately so callers can
apply their own alerting.
"""

from __future__ import annotations

import logging

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

STORAGE_RETRY_ATTEMPTS = 3


def is_transient_storage_error(exc: BaseException) -> bool:
    """Classify a storage exception as worth retrying."""
    if isinstance(exc, httpx.ConnectError | httpx.TimeoutException | ResponseHandlingException):
        return True
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code is not None and exc.status_code >= 500
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    """Log storage retries with the failing operation and cause."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying storage operation %s (attempt %d): %s",
        retry_state.fn.__name__ if retry_state.fn else "unknown",
        retry_state.attempt_number,
        exception,
    )


# Applied to individual Qdrant calls, never to whole delivery flows
storage_retry = retry(
    stop=stop_after_attempt(STORAGE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient_storage_error),
    before_sleep=_log_retry,
    reraise=True,
)
