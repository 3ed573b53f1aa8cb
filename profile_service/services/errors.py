"""
Service layer exceptions.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from profile_service.services.classifier import ClassifiedError


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class RequestTimeoutError(ServiceError):
    """Operation timed out."""

    def __init__(self, timeout_ms: float, message: str = "Operation timed out"):
        self.timeout_ms = timeout_ms
        super().__init__(f"{message} after {timeout_ms:.0f}ms")


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = "Rate limit exceeded"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg)


class ServiceUnavailableError(ServiceError):
    """Backing store is temporarily unavailable."""

    pass


class NetworkError(ServiceError):
    """Backing store could not be reached."""

    pass


class PaymentRequiredError(ServiceError):
    """Backing store refused the call until the account is topped up."""

    pass


class ProfileNotFoundError(ServiceError):
    """No profile (or role record) exists for the requested user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Profile not found for user '{user_id}'")


class RoleMismatchError(ServiceError):
    """Caller-supplied role disagrees with the stored role assignment."""

    def __init__(self, user_id: str, expected: str, actual: str):
        self.user_id = user_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"User '{user_id}' has role '{actual}', not '{expected}'"
        )


class RepositoryError(ServiceError):
    """Backing store answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ErrorCode(str, Enum):
    """Facade-level error codes."""

    FETCH_ERROR = "FETCH_ERROR"
    UPDATE_ERROR = "UPDATE_ERROR"
    SEARCH_ERROR = "SEARCH_ERROR"
    ROLE_FETCH_ERROR = "ROLE_FETCH_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class ProfileServiceError(ServiceError):
    """
    A failure that escaped the retry layer, wrapped with operation context.

    ``message`` is safe to show to callers; the classified cause keeps the
    technical details for the event log.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        cause: ClassifiedError,
        user_id: str | None = None,
        operation: str | None = None,
    ):
        self.code = code
        self.message = message
        self.cause = cause
        self.user_id = user_id
        self.timestamp = datetime.now()
        super().__init__(message, operation=operation)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (for logs and event metadata)."""
        return {
            "code": self.code.value,
            "message": self.message,
            "kind": self.cause.kind.value,
            "retryable": self.cause.retryable,
            "details": self.cause.message,
            "user_id": self.user_id,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
        }
