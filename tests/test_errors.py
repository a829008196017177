import asyncio

import pytest

from infinite_heroes.common import (
    ConfigurationError,
    CredentialError,
    ErrorKind,
    GenerationTimeoutError,
    MalformedResponseError,
    NetworkError,
    OfflineError,
    ProviderError,
    RateLimitedError,
    StorageError,
    classify_error,
)


class HTTPFailure(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class ResponseFailure(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.response = FakeResponse(status_code)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, CredentialError),
        (403, CredentialError),
        (429, RateLimitedError),
        (504, GenerationTimeoutError),
        (502, NetworkError),
    ],
)
def test_status_codes(status, expected):
    assert isinstance(classify_error(HTTPFailure("boom", status)), expected)


def test_permission_reason():
    error = classify_error(ResponseFailure("billing", 402))

    assert isinstance(error, CredentialError)
    assert error.reason == "permission"
    assert error.kind is ErrorKind.CREDENTIAL
    assert not error.retryable


def test_message_markers():
    assert isinstance(classify_error(RuntimeError("OFFLINE")), OfflineError)
    invalid = classify_error(RuntimeError("API_KEY_INVALID: check your key"))
    assert isinstance(invalid, CredentialError) and invalid.reason == "invalid"
    denied = classify_error(RuntimeError("PERMISSION_DENIED"))
    assert isinstance(denied, CredentialError) and denied.reason == "permission"
    forbidden = classify_error(RuntimeError("HTTP 403 Forbidden"))
    assert isinstance(forbidden, CredentialError) and forbidden.reason == "permission"
    unauthorized = classify_error(RuntimeError("Error 401: unauthorized"))
    assert isinstance(unauthorized, CredentialError) and unauthorized.reason == "invalid"


@pytest.mark.parametrize(
    "message",
    ["prediction ab401cd failed", "prediction 4031 failed", "seed 1.403 rejected", "job-401-x stalled"],
)
def test_status_digits_inside_identifiers_are_not_credentials(message):
    classified = classify_error(RuntimeError(message))

    assert not isinstance(classified, CredentialError)
    assert type(classified) is ProviderError


def test_builtin_exceptions():
    assert isinstance(classify_error(asyncio.TimeoutError()), GenerationTimeoutError)
    assert isinstance(classify_error(ConnectionResetError("reset")), NetworkError)
    missing = classify_error(FileNotFoundError("missing.png"))
    assert isinstance(missing, ConfigurationError) and missing.retryable is False
    assert isinstance(classify_error(ValueError("bad json")), MalformedResponseError)
    assert type(classify_error(RuntimeError("???"))) is ProviderError


def test_engine_errors_pass_through():
    original = StorageError("disk full", retryable=False)

    assert classify_error(original) is original


def test_retryable_flags():
    assert NetworkError("x").retryable
    assert GenerationTimeoutError("x").retryable
    assert MalformedResponseError("x").retryable
    assert not CredentialError().retryable
