"""
Common utilities shared across Infinite Heroes modules.
"""

from .errors import (
    ComicEngineError,
    ConfigurationError,
    CredentialError,
    ErrorKind,
    GenerationTimeoutError,
    MalformedResponseError,
    NetworkError,
    OfflineError,
    OperationCancelledError,
    ProviderError,
    RateLimitedError,
    StorageError,
    classify_error,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion
from .retry import RetryPolicy, retry_with_backoff
from .settings import EngineSettings
from .tokens import CancelToken, run_with_deadline

__all__ = [
    "CancelToken",
    "ChatResult",
    "ComicEngineError",
    "CompletionCallable",
    "ConfigurationError",
    "CredentialError",
    "EngineSettings",
    "ErrorKind",
    "GenerationTimeoutError",
    "MalformedResponseError",
    "NetworkError",
    "OfflineError",
    "OperationCancelledError",
    "ProviderError",
    "RateLimitedError",
    "RetryPolicy",
    "StorageError",
    "call_chat_completion",
    "classify_error",
    "retry_with_backoff",
    "run_with_deadline",
]
