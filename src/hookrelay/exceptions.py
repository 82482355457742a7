"""HookRelay exception hierarchy.

Every error raised by the engine derives from HookRelayError. Business
conditions in the facade are returned as results; these exceptions cover
the component layer and storage.
"""

from __future__ import annotations


class HookRelayError(Exception):
    """Base exception for all HookRelay errors.

    Attributes:
        message: Human-readable error description.
        code: Stable identifier for the error kind.
    """

    code: str = "hookrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Error body for an HTTP layer hosting the engine."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HookRelayError):
    """Endpoint configuration rejected.

    Raised synchronously when endpoint configuration fails validation.
    Never retried.

    Attributes:
        field: The field that failed validation.
        reason: Description of the validation failure, without the field name.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.reason = message
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Error body for an HTTP layer hosting the engine."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HookRelayError):
    """Resource not found.

    Raised when an endpoint or delivery ID doesn't exist.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Error body for an HTTP layer hosting the engine."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class InvalidStateError(HookRelayError):
    """Operation not allowed in the delivery's current state.

    Raised when retrying a delivery that already reached a terminal state
    or is currently being sent.

    Attributes:
        delivery_id: The delivery that was targeted.
        status: Status of its latest attempt.
    """

    code: str = "invalid_state"

    def __init__(self, delivery_id: str, status: str, message: str | None = None) -> None:
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(message or f"Delivery {delivery_id} cannot be retried in state '{status}'")

    def to_dict(self) -> dict[str, object]:
        """Error body for an HTTP layer hosting the engine."""
        return {
            "error": {
                "code": self.code,
                "delivery_id": self.delivery_id,
                "status": self.status,
                "message": self.message,
            }
        }


class DeliveryError(HookRelayError):
    """A single delivery attempt failed.

    Attributes:
        status_code: HTTP status returned by the endpoint, if any.
    """

    code: str = "delivery_error"
    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransientDeliveryError(DeliveryError):
    """Timeout, connection failure, 408, 429 or 5xx. Retried per policy."""

    code: str = "transient_delivery_error"
    retryable: bool = True


class PermanentDeliveryError(DeliveryError):
    """Client-side rejection (4xx other than 408/429) or an unsendable URL. Never retried."""

    code: str = "permanent_delivery_error"


class StorageError(HookRelayError):
    """Qdrant is unreachable or the store was used before initialize()."""

    code: str = "storage_error"


class ConfigurationError(HookRelayError):
    """Settings needed to start the engine are missing."""

    code: str = "configuration_error"
