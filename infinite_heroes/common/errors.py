"""
Error taxonomy shared by the providers, the orchestrator, and the storage layer.

Hierarchy::

    ComicEngineError
    ├── ProviderError
    │   ├── CredentialError          (fatal, never retried)
    │   ├── NetworkError             (retryable)
    │   │   ├── OfflineError
    │   │   └── RateLimitedError
    │   ├── GenerationTimeoutError   (retryable)
    │   └── MalformedResponseError   (retryable; beats fall back instead)
    ├── OperationCancelledError      (silent)
    ├── StorageError                 (retryable flag set per instance)
    └── ConfigurationError
"""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum

import litellm

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Category surfaced on the session error flag."""

    CREDENTIAL = "credential"
    NETWORK = "network"
    TIMEOUT = "timeout"
    GENERATION = "generation"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class ComicEngineError(Exception):
    """Base class for every error raised by the engine."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False


class ProviderError(ComicEngineError):
    """An AI provider call failed."""

    kind = ErrorKind.GENERATION


class CredentialError(ProviderError):
    """
    The API key is missing, invalid, expired, or lacks permission/billing.

    ``reason`` is either ``"invalid"`` or ``"permission"``.
    """

    kind = ErrorKind.CREDENTIAL

    def __init__(self, message: str = "API_KEY_ERROR", *, reason: str = "invalid") -> None:
        super().__init__(message)
        self.reason = reason


class NetworkError(ProviderError):
    kind = ErrorKind.NETWORK
    retryable = True


class OfflineError(NetworkError):
    pass


class RateLimitedError(NetworkError):
    pass


class GenerationTimeoutError(ProviderError):
    kind = ErrorKind.TIMEOUT
    retryable = True


class MalformedResponseError(ProviderError):
    retryable = True


class OperationCancelledError(ComicEngineError):
    """Raised when a cancellation token fires before or during a call."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)


class StorageError(ComicEngineError):
    kind = ErrorKind.STORAGE

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigurationError(ComicEngineError):
    pass


_CREDENTIAL_PATTERN = re.compile(
    r"\b(?:API_KEY_INVALID|API_KEY_ERROR|PERMISSION_DENIED)\b"
    r"|(?<![\w.-])40[13](?![\w.-])"
)
_PERMISSION_PATTERN = re.compile(r"PERMISSION|(?<![\w.-])403(?![\w.-])")
_OFFLINE_MARKERS = ("OFFLINE",)


def classify_error(exc: BaseException) -> ComicEngineError:
    """
    Map an arbitrary exception raised by a provider SDK onto the engine taxonomy.

    Errors that already belong to the taxonomy are returned untouched.
    """
    if isinstance(exc, ComicEngineError):
        return exc

    message = str(exc) or type(exc).__name__

    if isinstance(exc, litellm.AuthenticationError):
        return CredentialError(message, reason="invalid")
    if isinstance(exc, litellm.PermissionDeniedError):
        return CredentialError(message, reason="permission")
    if isinstance(exc, litellm.RateLimitError):
        return RateLimitedError(message)
    if isinstance(exc, (litellm.Timeout, asyncio.TimeoutError, TimeoutError)):
        return GenerationTimeoutError(message)
    if isinstance(exc, litellm.APIConnectionError):
        return NetworkError(message)

    status = _status_code(exc)
    if status is not None:
        if status == 401:
            return CredentialError(message, reason="invalid")
        if status in (402, 403):
            return CredentialError(message, reason="permission")
        if status == 429:
            return RateLimitedError(message)
        if status in (408, 504):
            return GenerationTimeoutError(message)
        if status >= 500:
            return NetworkError(message)

    if any(marker in message for marker in _OFFLINE_MARKERS):
        return OfflineError(message)
    if _CREDENTIAL_PATTERN.search(message):
        reason = "permission" if _PERMISSION_PATTERN.search(message) else "invalid"
        return CredentialError(message, reason=reason)
    if isinstance(exc, FileNotFoundError):
        return ConfigurationError(message)
    if isinstance(exc, (ConnectionError, OSError)):
        return NetworkError(message)
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return MalformedResponseError(message)

    logger.debug("Unclassified provider error %s: %s", type(exc).__name__, message)
    return ProviderError(message)


def _status_code(exc: BaseException) -> int | None:
    for attribute in ("status_code", "status"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None
