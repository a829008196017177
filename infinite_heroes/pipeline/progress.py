"""
Progress values reported at each pipeline stage.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Callable

Clock = Callable[[], float]

PREPARING_SUBSTEP = "Preparing story context..."
WRITING_SUBSTEP = "AI is crafting story beats..."
CASTING_SUBSTEP = "Generating character appearance..."
INKING_SUBSTEP = "Rendering artwork with AI..."


@dataclass(frozen=True)
class Progress:
    """
    Snapshot of where a batch (or the launch sequence) currently is.

    Attributes
    ----------
    current, total:
        Step counters; ``current`` is 1-based while work is under way.
    label:
        Short stage label such as ``"Inking Panel 3"``.
    substep:
        Optional finer-grained description of the stage.
    percentage:
        ``round(100 * current / total)``, rounded half up.
    start_time:
        Wall-clock time the reported operation started.
    elapsed:
        Seconds between ``start_time`` and the moment of the report.
    """

    current: int
    total: int
    label: str
    percentage: int
    start_time: float
    elapsed: float = 0.0
    substep: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "label": self.label,
            "substep": self.substep,
            "percentage": self.percentage,
            "start_time": self.start_time,
            "elapsed": round(self.elapsed, 3),
        }


def compute_percentage(current: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(math.floor(100 * current / total + 0.5))


class ProgressReporter:
    """Builds :class:`Progress` values against an injectable clock."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def report(
        self,
        label: str,
        current: int,
        total: int,
        substep: str | None = None,
        start_time: float | None = None,
    ) -> Progress:
        now = self._clock()
        started = now if start_time is None else start_time
        return Progress(
            current=current,
            total=total,
            label=label,
            substep=substep,
            percentage=compute_percentage(current, total),
            start_time=started,
            elapsed=max(0.0, now - started),
        )


def batch_label(first_page: int, last_page: int) -> str:
    return f"Generating Pages {first_page}-{last_page}"


def writing_label(page: int) -> str:
    return f"Writing Page {page}"


def casting_label(page: int) -> str:
    return f"Casting Sidekick for Page {page}"


def inking_label(page: int) -> str:
    return f"Inking Panel {page}"
