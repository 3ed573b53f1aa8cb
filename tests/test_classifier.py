"""
Tests for error classification.
"""

import asyncio

import httpx
import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError

from profile_service.services.classifier import ErrorKind, classify_error
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
from profile_service.types import UserSearchOptions


def _http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://db.example.com/rest/v1/profiles")
    response = httpx.Response(status, request=request, text="boom")
    return httpx.HTTPStatusError("error", request=request, response=response)


def _validation_error() -> ValidationError:
    try:
        UserSearchOptions(page=0)
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


class _StatusError(Exception):
    def __init__(self, status: int):
        super().__init__(f"status {status}")
        self.status = status


@pytest.mark.parametrize(
    "error, kind",
    [
        (ProfileNotFoundError("u1"), ErrorKind.NOT_FOUND),
        (NoResultFound(), ErrorKind.NOT_FOUND),
        (IntegrityError("INSERT", {}, Exception("duplicate")), ErrorKind.VALIDATION),
        (RoleMismatchError("u1", "user", "agent"), ErrorKind.VALIDATION),
        (PaymentRequiredError("no credits"), ErrorKind.PAYMENT_REQUIRED),
        (RateLimitError(retry_after=2), ErrorKind.RATE_LIMIT),
        (RequestTimeoutError(500), ErrorKind.TIMEOUT),
        (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
        (httpx.ConnectTimeout("slow"), ErrorKind.TIMEOUT),
        (ServiceUnavailableError("maintenance"), ErrorKind.SERVER),
        (RepositoryError("HTTP 429", status_code=429), ErrorKind.RATE_LIMIT),
        (RepositoryError("HTTP 402", status_code=402), ErrorKind.PAYMENT_REQUIRED),
        (RepositoryError("HTTP 404", status_code=404), ErrorKind.NOT_FOUND),
        (RepositoryError("HTTP 422", status_code=422), ErrorKind.VALIDATION),
        (RepositoryError("HTTP 503", status_code=503), ErrorKind.SERVER),
        (_http_status_error(500), ErrorKind.SERVER),
        (_http_status_error(404), ErrorKind.NOT_FOUND),
        (_StatusError(502), ErrorKind.SERVER),
        (NetworkError("unreachable"), ErrorKind.NETWORK),
        (httpx.ConnectError("refused"), ErrorKind.NETWORK),
        (OperationalError("SELECT 1", {}, Exception("gone")), ErrorKind.NETWORK),
        (ConnectionResetError(), ErrorKind.NETWORK),
        (RuntimeError("rate limit reached"), ErrorKind.RATE_LIMIT),
        (RuntimeError("socket timeout"), ErrorKind.TIMEOUT),
        (RuntimeError("payment declined"), ErrorKind.PAYMENT_REQUIRED),
        (RuntimeError("boom"), ErrorKind.UNKNOWN),
    ],
)
def test_classify_error_kind(error, kind):
    assert classify_error(error).kind == kind


def test_pydantic_validation_error_is_validation():
    classified = classify_error(_validation_error())
    assert classified.kind == ErrorKind.VALIDATION
    assert classified.retryable is False


@pytest.mark.parametrize(
    "kind, retryable",
    [
        (ErrorKind.NETWORK, True),
        (ErrorKind.TIMEOUT, True),
        (ErrorKind.RATE_LIMIT, True),
        (ErrorKind.SERVER, True),
        (ErrorKind.NOT_FOUND, False),
        (ErrorKind.VALIDATION, False),
        (ErrorKind.PAYMENT_REQUIRED, False),
        (ErrorKind.UNKNOWN, True),
    ],
)
def test_retryability_table(kind, retryable):
    examples = {
        ErrorKind.NETWORK: NetworkError("x"),
        ErrorKind.TIMEOUT: RequestTimeoutError(10),
        ErrorKind.RATE_LIMIT: RateLimitError(),
        ErrorKind.SERVER: ServiceUnavailableError("x"),
        ErrorKind.NOT_FOUND: ProfileNotFoundError("x"),
        ErrorKind.VALIDATION: RepositoryError("bad", status_code=400),
        ErrorKind.PAYMENT_REQUIRED: PaymentRequiredError("x"),
        ErrorKind.UNKNOWN: RuntimeError("x"),
    }
    classified = classify_error(examples[kind])
    assert classified.kind == kind
    assert classified.retryable is retryable


def test_classified_error_keeps_details_and_user_message():
    error = RepositoryError("HTTP 503: upstream down", status_code=503)
    classified = classify_error(error)

    assert classified.original is error
    assert "upstream down" in classified.message
    assert "upstream down" not in classified.user_message
    assert classified.user_message


def test_unrecognized_status_falls_through_to_message():
    assert classify_error(_StatusError(418)).kind == ErrorKind.UNKNOWN
