"""
Cooperative cancellation tokens and the deadline guard used around every remote call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from .errors import GenerationTimeoutError, OperationCancelledError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CancelToken:
    """
    A cancellable handle that propagates cancellation to every child token.

    Cancelling a parent (e.g. a batch) transitively cancels the per-stage
    children created from it. Cancelling a child never affects its parent.
    """

    def __init__(self, *, parent: CancelToken | None = None, label: str | None = None) -> None:
        self._event = asyncio.Event()
        self._reason: BaseException | None = None
        self._children: set[CancelToken] = set()
        self._parent = parent
        self.label = label
        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancelToken(label={self.label!r}, {state})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def child(self, label: str | None = None) -> CancelToken:
        return CancelToken(parent=self, label=label)

    def cancel(self, reason: BaseException | str | None = None) -> bool:
        """
        Cancel this token and all of its descendants.

        Returns ``False`` when the token had already been cancelled.
        """
        if self.cancelled:
            return False
        if reason is None:
            reason = OperationCancelledError(f"{self.label or 'operation'} cancelled")
        elif isinstance(reason, str):
            reason = OperationCancelledError(reason)
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)
        return True

    def detach(self) -> None:
        """Stop tracking this token from its parent once the work it guards is done."""
        if self._parent is not None:
            self._parent._children.discard(self)
            self._parent = None

    def raise_if_cancelled(self) -> None:
        if not self.cancelled:
            return
        reason = self._reason
        if isinstance(reason, OperationCancelledError):
            raise OperationCancelledError(str(reason)) from reason
        raise OperationCancelledError(str(reason) or "Operation cancelled") from reason

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early with an error if the token fires."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


async def run_with_deadline(
    factory: Callable[[], Awaitable[T]],
    *,
    token: CancelToken,
    timeout: float | None,
    label: str,
) -> T:
    """
    Run one remote call guarded by ``token`` and a per-stage deadline.

    The token is checked before the call starts. Whichever of cancellation or
    the deadline fires first determines the raised error. A result that
    arrives after the token fired is discarded.
    """
    token.raise_if_cancelled()

    task: asyncio.Future[T] = asyncio.ensure_future(factory())
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if token.cancelled:
        if not task.done():
            task.cancel()
        task.add_done_callback(_discard_result)
        logger.debug("Discarding %s result after cancellation", label)
        token.raise_if_cancelled()

    if task in done:
        return task.result()

    task.cancel()
    task.add_done_callback(_discard_result)
    raise GenerationTimeoutError(f"{label} timed out after {timeout}s")


def _discard_result(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
