"""Configuration management for HookRelay."""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Backoff policy for failed deliveries.

    The delay before attempt ``n + 1`` is:
        min(base_delay_seconds * 2 ** n, max_delay_seconds)
    multiplied by a random factor in ``[1 - jitter, 1 + jitter]`` and capped
    at ``max_delay_seconds``.

    Attributes:
        base_delay_seconds: Base delay (1s default).
        max_delay_seconds: Upper bound on any single delay (10 minutes default).
        max_attempts: Total attempts per delivery, including the first (3 default).
        jitter: Fractional jitter applied to each delay (0.2 = +-20%).
    """

    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Base retry delay in seconds",
    )
    max_delay_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="Maximum retry delay in seconds",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=25,
        description="Maximum delivery attempts, including the first",
    )
    jitter: float = Field(
        default=0.2,
        ge=0.0,
        lt=1.0,
        description="Fractional jitter applied to each delay",
    )

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryPolicy":
        """The cap must not be lower than the base delay."""
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


class Settings(BaseSettings):
    """HookRelay configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKRELAY_ prefix. For example:
        HOOKRELAY_QDRANT_URL=http://localhost:6333
        HOOKRELAY_REQUEST_TIMEOUT_SECONDS=5
        HOOKRELAY_RETRY_POLICY__MAX_ATTEMPTS=5
    """

    model_config = {
        "env_prefix": "HOOKRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL (use ':memory:' for local mode)",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="hookrelay",
        description="Prefix for Qdrant collection names",
    )

    # Delivery
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Default connect+read timeout for outbound requests",
    )
    max_concurrent_deliveries: int = Field(
        default=50,
        ge=1,
        description="Global cap on in-flight deliveries",
    )
    max_in_flight_per_endpoint: int = Field(
        default=2,
        ge=1,
        description="Cap on in-flight deliveries to a single endpoint",
    )
    background_pool_size: int = Field(
        default=20,
        ge=1,
        description="Cap on concurrently running fire-and-forget tasks",
    )
    response_body_limit: int = Field(
        default=1000,
        ge=0,
        description="Bytes of response body read and characters kept on each attempt",
    )

    # Retries
    retry_policy: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Default backoff policy, overridable per endpoint",
    )
    retry_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="How often the retry worker looks for due attempts",
    )
    retry_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum due attempts processed per worker tick",
    )
    stale_sending_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Attempts stuck in 'sending' longer than this are reclaimed",
    )

    # Endpoint health
    auto_disable_threshold: int = Field(
        default=5,
        ge=0,
        description=(
            "Disable an endpoint after this many consecutive permanent or "
            "exhausted failures. 0 turns auto-disable off."
        ),
    )

    # Archival
    delivery_retention_days: int = Field(
        default=30,
        ge=1,
        description="Terminal attempts older than this are purged",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        """Reclaiming must not race in-flight requests."""
        if self.stale_sending_seconds <= self.request_timeout_seconds:
            raise ValueError(
                f"stale_sending_seconds ({self.stale_sending_seconds}) must be greater than "
                f"request_timeout_seconds ({self.request_timeout_seconds})"
            )
        if self.env == "production" and self.qdrant_url == ":memory:":
            logger.warning(
                "In-memory Qdrant configured in production; delivery history is lost on restart"
            )
        return self


# Global settings instance
settings = Settings()
