"""In-memory top-N ranking of history pages."""

from __future__ import annotations

import bisect
import logging
from typing import Iterable

from frecent_links.history.models import LinkEntry
from frecent_links.links.checker import LinkChecker

logger = logging.getLogger(__name__)


class LinkIndex:
    """The ``capacity`` best eligible pages, kept sorted by ``LinkEntry.sort_key``.

    The index only knows the pages it holds. When a held page drops to the
    tail of a full index or leaves it, a page outside the index may now
    belong in it; ``update`` and ``discard`` report that by returning True,
    and the owner reloads the index from the store.
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError(f"Index capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: list[LinkEntry] = []
        self._keys: list[tuple[int, int, str]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return any(entry.url == url for entry in self._entries)

    def load(self, entries: Iterable[LinkEntry]) -> None:
        """Replace the contents with the best of ``entries``."""
        eligible = [e for e in entries if LinkChecker.is_eligible(e.url)]
        eligible.sort(key=lambda e: e.sort_key)
        self._entries = eligible[: self.capacity]
        self._keys = [e.sort_key for e in self._entries]

    def reset(self) -> None:
        self._entries = []
        self._keys = []

    def update(self, entry: LinkEntry) -> bool:
        """Insert or reposition ``entry``. Returns True if a reload is needed."""
        if not LinkChecker.is_eligible(entry.url):
            return self.discard(entry.url)

        was_full = len(self._entries) >= self.capacity
        old_key = self._pop(entry.url)
        key = entry.sort_key
        pos = bisect.bisect_left(self._keys, key)
        self._entries.insert(pos, entry)
        self._keys.insert(pos, key)

        if len(self._entries) > self.capacity:
            self._entries.pop()
            self._keys.pop()
            return False

        # A held page that fell to the tail of a full index may have been
        # overtaken by a page the index does not hold.
        demoted = old_key is not None and key > old_key
        return was_full and demoted and pos == len(self._entries) - 1

    def discard(self, url: str) -> bool:
        """Drop ``url``. Returns True if a reload is needed to refill the slot."""
        was_full = len(self._entries) >= self.capacity
        return self._pop(url) is not None and was_full

    def top(self, limit: int | None = None) -> list[LinkEntry]:
        if limit is None:
            limit = self.capacity
        return list(self._entries[:limit])

    def _pop(self, url: str) -> tuple[int, int, str] | None:
        for i, entry in enumerate(self._entries):
            if entry.url == url:
                del self._entries[i]
                return self._keys.pop(i)
        return None
