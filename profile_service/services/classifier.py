"""
Error classification - maps any exception raised by the backing store into a
small, fixed taxonomy with a retryable flag.

The retry executor decides whether to try again from ``retryable``; the
facade turns ``user_message`` into what callers see.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, IntegrityError, NoResultFound, OperationalError

from profile_service.services.errors import (
    NetworkError,
    PaymentRequiredError,
    ProfileNotFoundError,
    RateLimitError,
    RepositoryError,
    RequestTimeoutError,
    RoleMismatchError,
    ServiceUnavailableError,
)


class ErrorKind(str, Enum):
    """Error taxonomy."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    PAYMENT_REQUIRED = "payment_required"
    NOT_FOUND = "not_found"
    SERVER = "server"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER,
        ErrorKind.UNKNOWN,
    }
)

_MESSAGES: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.NETWORK: (
        "Network connection failed",
        "Connection failed. Please check your internet and try again.",
    ),
    ErrorKind.TIMEOUT: (
        "Request timeout",
        "Request timed out. Please try again.",
    ),
    ErrorKind.RATE_LIMIT: (
        "Rate limit exceeded",
        "Too many requests. Please wait a moment and try again.",
    ),
    ErrorKind.PAYMENT_REQUIRED: (
        "Payment required",
        "Please add credits to your account to continue.",
    ),
    ErrorKind.NOT_FOUND: (
        "Resource not found",
        "The requested resource was not found.",
    ),
    ErrorKind.SERVER: (
        "Server error",
        "Server error. Please try again in a moment.",
    ),
    ErrorKind.VALIDATION: (
        "Validation failed",
        "Please check your input and try again.",
    ),
    ErrorKind.UNKNOWN: (
        "An unexpected error occurred",
        "Something went wrong. Please try again.",
    ),
}


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying an exception."""

    kind: ErrorKind
    retryable: bool
    message: str
    user_message: str
    original: BaseException | None = None


def _from_status(status: int) -> ErrorKind | None:
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status == 402:
        return ErrorKind.PAYMENT_REQUIRED
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 408:
        return ErrorKind.TIMEOUT
    if status in (400, 409, 422):
        return ErrorKind.VALIDATION
    if status >= 500:
        return ErrorKind.SERVER
    return None


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, RepositoryError):
        return error.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _kind_of(error: BaseException) -> ErrorKind:
    # Explicit types first; order matters where classes overlap
    if isinstance(error, (ProfileNotFoundError, NoResultFound)):
        return ErrorKind.NOT_FOUND
    if isinstance(error, (ValidationError, IntegrityError, RoleMismatchError)):
        return ErrorKind.VALIDATION
    if isinstance(error, PaymentRequiredError):
        return ErrorKind.PAYMENT_REQUIRED
    if isinstance(error, RateLimitError):
        return ErrorKind.RATE_LIMIT
    if isinstance(
        error, (RequestTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)
    ):
        return ErrorKind.TIMEOUT
    if isinstance(error, ServiceUnavailableError):
        return ErrorKind.SERVER

    status = _status_of(error)
    if status is not None:
        kind = _from_status(status)
        if kind is not None:
            return kind

    if isinstance(
        error, (NetworkError, httpx.TransportError, OperationalError, ConnectionError)
    ):
        return ErrorKind.NETWORK
    if isinstance(error, DBAPIError):
        return ErrorKind.NETWORK if error.connection_invalidated else ErrorKind.SERVER
    if isinstance(error, OSError):
        return ErrorKind.NETWORK

    text = str(error).lower()
    if "rate limit" in text:
        return ErrorKind.RATE_LIMIT
    if "timeout" in text or "timed out" in text:
        return ErrorKind.TIMEOUT
    if "payment" in text:
        return ErrorKind.PAYMENT_REQUIRED

    return ErrorKind.UNKNOWN


def classify_error(error: BaseException) -> ClassifiedError:
    """Classify an exception. Never raises."""
    kind = _kind_of(error)
    message, user_message = _MESSAGES[kind]
    detail = str(error)
    return ClassifiedError(
        kind=kind,
        retryable=kind in RETRYABLE_KINDS,
        message=f"{message}: {detail}" if detail else message,
        user_message=user_message,
        original=error,
    )
