"""Bounded in-memory store for full book texts.

Book texts are orders of magnitude larger than catalogue responses, so they
live in their own store with a fixed entry count and a longer TTL instead of
sharing the request cache's policy.

Eviction is first-in-first-out by insertion order. Reads never refresh an
entry's position; re-storing an id moves it to the newest slot.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING

import structlog

from bookshelf.models.cache import ContentCacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable

log = structlog.get_logger()


class BoundedContentCache:
    """FIFO-evicted, TTL-checked store of raw book texts keyed by book id."""

    def __init__(
        self,
        *,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: OrderedDict[int, ContentCacheEntry] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, book_id: object) -> bool:
        with self._lock:
            return book_id in self._entries

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, book_id: int) -> str | None:
        """Return the stored text, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(book_id)
            if entry is None:
                return None
            if not entry.is_fresh(self._clock(), self._ttl):
                del self._entries[book_id]
                log.debug("content_cache_expired", book_id=book_id)
                return None
            return entry.text

    def put(self, book_id: int, text: str) -> None:
        with self._lock:
            # A re-fetched book counts as a fresh insert.
            self._entries.pop(book_id, None)
            while len(self._entries) >= self._max_entries:
                evicted_id, evicted = self._entries.popitem(last=False)
                log.info(
                    "content_cache_evicted",
                    book_id=evicted_id,
                    chars=len(evicted.text),
                )
            self._entries[book_id] = ContentCacheEntry(
                book_id=book_id, text=text, stored_at=self._clock()
            )

    def sweep_expired(self) -> int:
        """Physically remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [
                book_id
                for book_id, entry in self._entries.items()
                if not entry.is_fresh(now, self._ttl)
            ]
            for book_id in expired:
                del self._entries[book_id]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def ids(self) -> list[int]:
        """Resident ids, oldest insert first."""
        with self._lock:
            return list(self._entries)
