"""
Registry of cancellation handles for in-flight remote calls.
"""

from __future__ import annotations

import logging
from enum import Enum

from infinite_heroes.common import CancelToken

logger = logging.getLogger(__name__)


class GenerationStage(str, Enum):
    BEAT = "beat"
    PERSONA = "persona"
    IMAGE = "image"


HandleKey = tuple[int, GenerationStage]


class CancellationRegistry:
    """
    Keyed table of cancellation tokens, one per ``(page, stage)`` remote call.

    Batch tokens act as parents: stage tokens begun under a batch are
    cancelled with it. :meth:`abort_all` cancels everything outstanding and
    empties the table.
    """

    def __init__(self) -> None:
        self._handles: dict[HandleKey, CancelToken] = {}
        self._batches: set[CancelToken] = set()

    def __len__(self) -> int:
        return len(self._handles)

    def begin_batch(self, label: str | None = None) -> CancelToken:
        token = CancelToken(label=label or "batch")
        self._batches.add(token)
        return token

    def end_batch(self, token: CancelToken) -> None:
        self._batches.discard(token)

    def begin(
        self,
        page: int,
        stage: GenerationStage,
        *,
        parent: CancelToken | None = None,
    ) -> CancelToken:
        """Create and register the token guarding one stage of one page."""
        label = f"page {page} {stage.value}"
        token = parent.child(label) if parent is not None else CancelToken(label=label)
        previous = self._handles.get((page, stage))
        if previous is not None and previous is not token:
            previous.cancel(f"{label} superseded")
        self._handles[(page, stage)] = token
        return token

    def end(self, page: int, stage: GenerationStage, token: CancelToken | None = None) -> None:
        """
        Unregister the handle for ``(page, stage)`` after the call finished.

        When ``token`` is given, a newer handle registered under the same key
        is left alone.
        """
        key = (page, stage)
        current = self._handles.get(key)
        if current is None:
            return
        if token is not None and current is not token:
            token.detach()
            return
        del self._handles[key]
        current.detach()

    def get(self, page: int, stage: GenerationStage) -> CancelToken | None:
        return self._handles.get((page, stage))

    def cancel(self, page: int, stage: GenerationStage, reason: str | None = None) -> bool:
        token = self._handles.pop((page, stage), None)
        if token is None:
            return False
        return token.cancel(reason)

    def abort_all(self, reason: BaseException | str | None = None) -> int:
        """
        Cancel every outstanding handle and batch, then clear the table.

        Returns the number of tokens that were cancelled by this call.
        """
        reason = reason or "Generation aborted"
        cancelled = 0
        for token in list(self._batches):
            if token.cancel(reason):
                cancelled += 1
        for token in list(self._handles.values()):
            if token.cancel(reason):
                cancelled += 1
        self._batches.clear()
        self._handles.clear()
        if cancelled:
            logger.info("Aborted %d in-flight operation(s)", cancelled)
        return cancelled
