"""
Atomic claims on page numbers that are currently being generated.
"""

from __future__ import annotations

import threading
from typing import Hashable, Iterable


class PageReservationRegistry:
    """
    Set of in-flight page numbers with an atomic check-and-reserve.

    Each entry can remember the owner (typically a batch token) that reserved
    it, so a batch unwinding after an abort only frees its own pages.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owners: dict[int, Hashable | None] = {}

    def __contains__(self, page_number: object) -> bool:
        return self.is_reserved(page_number)  # type: ignore[arg-type]

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)

    def reserve(self, page_numbers: Iterable[int], *, owner: Hashable | None = None) -> list[int]:
        """
        Reserve every page not already held and return the ones actually reserved.

        Order of ``page_numbers`` is preserved; duplicates in the input are
        reserved once.
        """
        reserved: list[int] = []
        with self._lock:
            for page in page_numbers:
                if page in self._owners:
                    continue
                self._owners[page] = owner
                reserved.append(page)
        return reserved

    def release(self, page_numbers: Iterable[int], *, owner: Hashable | None = None) -> None:
        """
        Remove reservations. With ``owner`` set, entries held by someone else are kept.
        """
        with self._lock:
            for page in page_numbers:
                if page not in self._owners:
                    continue
                if owner is not None and self._owners[page] is not owner:
                    continue
                del self._owners[page]

    def is_reserved(self, page_number: int) -> bool:
        with self._lock:
            return page_number in self._owners

    def snapshot(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._owners)

    def clear(self) -> None:
        with self._lock:
            self._owners.clear()
