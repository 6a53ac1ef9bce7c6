from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached upstream response keyed by its normalised request."""

    value: V
    stored_at: float  # Monotonic clock reading at store time

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.stored_at < ttl_seconds


@dataclass(frozen=True)
class ContentCacheEntry:
    """Raw text of a single book held by the bounded content cache."""

    book_id: int
    text: str
    stored_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.stored_at < ttl_seconds
