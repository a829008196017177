"""
Bounded LRU cache with a TTL for unguided beat responses.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Hashable

from .models import Beat

Clock = Callable[[], float]


class BeatCache:
    """
    Owned, explicitly disposed cache keyed by ``(page, history length, genre, language)``.

    Entries older than ``ttl`` seconds are evicted on read; the least recently
    used entry is evicted when ``max_size`` is reached.
    """

    def __init__(self, *, max_size: int = 20, ttl: float = 300.0, clock: Clock = time.monotonic) -> None:
        self._max_size = max(0, max_size)
        self._ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[Beat, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def make_key(page_number: int, history_length: int, genre: str, language: str) -> tuple:
        return ("beat", page_number, history_length, genre, language)

    def get(self, key: Hashable) -> Beat | None:
        cached = self._entries.get(key)
        if cached is None:
            return None
        beat, stored_at = cached
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return beat

    def put(self, key: Hashable, beat: Beat) -> None:
        if self._max_size == 0:
            return
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (beat, self._clock())

    def clear(self) -> None:
        self._entries.clear()
