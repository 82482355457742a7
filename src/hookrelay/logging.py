"""Structured logging for HookRelay.

Output format and level come from ``settings.log_format`` and
``settings.log_level`` unless passed explicitly. Signing secrets never
reach log output: ``redact_secrets`` masks known sensitive keys before
rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

from hookrelay.config import settings

if TYPE_CHECKING:
    from structlog.typing import Processor

# Keys whose values are masked in every log event
SENSITIVE_KEYS = frozenset({"secret", "webhook_secret", "authorization", "api_key"})

_configured = False


def redact_secrets(
    _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values of sensitive keys in a log event."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def _render_chain(format: str) -> list[Processor]:
    if format.lower() == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(level: str | None = None, format: str | None = None) -> None:
    """Configure structlog on top of the stdlib root logger.

    Args:
        level: Log level name. Defaults to settings.log_level.
        format: "json" or "text". Defaults to settings.log_format.

    Example:
        ```python
        configure_logging(level="DEBUG", format="text")
        get_logger(__name__).info("Retry worker started", interval=5.0)
        ```
    """
    global _configured

    level = level or settings.log_level
    format = format or settings.log_format
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            *_render_chain(format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module. Configures from settings on first use."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def delivery_context(**kwargs: object) -> Iterator[None]:
    """Bind delivery identifiers for the duration of a block.

    Context variables are task-local, so concurrent deliveries do not see
    each other's identifiers.

    Example:
        ```python
        with delivery_context(delivery_id="dlv_abc", endpoint_id="whk_123"):
            logger.info("Sending")  # includes delivery_id and endpoint_id
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
