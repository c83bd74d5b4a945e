"""Standard exception classes for the developer portal services.

All custom exceptions inherit from PortalException and include:
- message: Human-readable error message
- error_code: Machine-readable error code (e.g., "NOT_FOUND")
- details: Optional dictionary with additional context

Delivery failures are not part of this hierarchy: they are contained in
the delivery engine and surface only through delivery history and stats.
Rate limiting is not an exception either; callers inspect
RateLimitResult.allowed.
"""

from typing import Any, Optional

from relay.secrets_codec import SecretGenerationError


class PortalException(Exception):
    """Base exception for all developer portal errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for client handling
        details: Optional dictionary with additional error context
        status_code: HTTP status code a transport layer should use
    """

    status_code: int = 500
    default_error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for a JSON response."""
        result = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(PortalException):
    """Malformed input: bad URL, empty event list, out-of-range retry config.

    Surfaced immediately, never retried.
    """

    status_code = 400
    default_error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)


class NotFoundError(PortalException):
    """Resource not found (HTTP 404).

    Raised for a missing row and for a row owned by another tenant alike.
    """

    status_code = 404
    default_error_code = "NOT_FOUND"

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)


class KeyNotFoundError(NotFoundError):
    """Raised when an API key is not found."""

    def __init__(self, message: str = "API key not found", **kwargs: Any):
        super().__init__(message, **kwargs)


class WebhookNotFoundError(NotFoundError):
    """Raised when a webhook is not found."""

    def __init__(self, message: str = "Webhook not found", **kwargs: Any):
        super().__init__(message, **kwargs)


class DeliveryNotFoundError(NotFoundError):
    """Raised when a delivery is not found."""

    def __init__(self, message: str = "Delivery not found", **kwargs: Any):
        super().__init__(message, **kwargs)


__all__ = [
    "PortalException",
    "ValidationError",
    "NotFoundError",
    "KeyNotFoundError",
    "WebhookNotFoundError",
    "DeliveryNotFoundError",
    "SecretGenerationError",
]
