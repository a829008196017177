"""
Bounded exponential backoff for transient provider failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from .errors import ComicEngineError, classify_error
from .tokens import CancelToken

T = TypeVar("T")

RetryCallback = Callable[[int, ComicEngineError, float], None]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry knobs.

    Attributes
    ----------
    max_retries:
        Number of additional attempts after the first failure.
    initial_delay:
        Delay in seconds before the first retry.
    factor:
        Multiplier applied to the delay after each retry.
    max_delay:
        Upper bound for a single delay.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.initial_delay * (self.factor**attempt), self.max_delay)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RetryPolicy":
        defaults = cls()
        return cls(
            max_retries=max(0, int(data.get("max_retries", defaults.max_retries))),
            initial_delay=float(data.get("initial_delay", defaults.initial_delay)),
            factor=float(data.get("factor", defaults.factor)),
            max_delay=float(data.get("max_delay", defaults.max_delay)),
        )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    token: CancelToken,
    label: str = "operation",
    on_retry: RetryCallback | None = None,
) -> T:
    """
    Await ``operation`` until it succeeds, retrying only retryable errors.

    Credential and cancellation errors propagate immediately. Backoff sleeps
    wake early when ``token`` is cancelled.
    """
    attempt = 0
    while True:
        token.raise_if_cancelled()
        try:
            return await operation()
        except Exception as exc:
            error = classify_error(exc)
            if not error.retryable or attempt >= policy.max_retries:
                if error is exc:
                    raise
                raise error from exc

            delay = policy.delay_for(attempt)
            attempt += 1
            logger.warning(
                "%s failed (%s: %s); retry %d/%d in %.1fs",
                label,
                type(error).__name__,
                error,
                attempt,
                policy.max_retries,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, error, delay)
            await token.sleep(delay)
