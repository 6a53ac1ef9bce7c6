"""In-memory cache for catalogue listing and metadata requests.

Entries are keyed by the normalised RequestDescriptor so that equivalent
queries share one slot. Concurrent misses for the same key are coalesced
onto a single in-flight task; every caller observes that task's single
outcome. Failed loads and payloads rejected by the caller's parser are never
stored, so the next call starts afresh.

Expiry is checked lazily on read. ``sweep_expired`` exists only to bound
memory and is driven by the background scheduler.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import TYPE_CHECKING, Any

import structlog

from bookshelf.cancellation import wait_unless_cancelled
from bookshelf.errors import BookshelfError
from bookshelf.fetcher import RetryPolicy, is_transient
from bookshelf.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable

    from bookshelf.cancellation import CancelToken
    from bookshelf.descriptors import RequestDescriptor
    from bookshelf.protocols import FetcherProtocol

log = structlog.get_logger()


class KeyedRequestCache:
    """TTL cache with request coalescing for small JSON payloads."""

    def __init__(
        self,
        fetcher: FetcherProtocol,
        *,
        base_url: str,
        ttl_seconds: float,
        timeout_seconds: float,
        retry: RetryPolicy = RetryPolicy(),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url
        self._ttl = ttl_seconds
        self._timeout = timeout_seconds
        self._retry = retry
        self._clock = clock

        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        # Bumped by clear() so loads started before it never repopulate the map.
        self._generation = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(self, descriptor: RequestDescriptor) -> Any | None:
        """Return a fresh cached value without any I/O, or None."""
        entry = self._fresh_entry(descriptor.cache_key)
        return entry.value if entry is not None else None

    def put(self, descriptor: RequestDescriptor, value: Any) -> None:
        """Seed the cache with a value obtained elsewhere."""
        key = descriptor.cache_key
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
        log.debug("request_cache_seeded", key=key)

    def in_flight(self, descriptor: RequestDescriptor) -> bool:
        with self._lock:
            return descriptor.cache_key in self._pending

    async def resolve(
        self,
        descriptor: RequestDescriptor,
        *,
        parse: Callable[[Any], Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> Any:
        """Return the cached value, joining or starting an upstream load on a miss.

        ``parse`` turns the decoded payload into the stored value. It runs
        before the write, so a payload it rejects is never cached. Callers
        joining an in-flight load share the parser of the caller that
        started it.

        Cancelling this caller (task cancellation or ``cancel``) abandons
        only its own wait; the shared load keeps running for other callers.
        """
        key = descriptor.cache_key
        entry = self._fresh_entry(key)
        if entry is not None:
            log.debug("request_cache_hit", key=key)
            return entry.value

        if cancel is not None:
            cancel.raise_if_cancelled()

        with self._lock:
            task = self._pending.get(key)
            if task is None:
                task = asyncio.create_task(
                    self._load(key, descriptor.url(self._base_url), self._generation, parse)
                )
                task.add_done_callback(self._log_failed_load)
                self._pending[key] = task
                log.debug("request_cache_miss", key=key)
            else:
                log.debug("request_cache_joined", key=key)

        return await wait_unless_cancelled(asyncio.shield(task), cancel)

    def prefetch(
        self,
        descriptor: RequestDescriptor,
        *,
        parse: Callable[[Any], Any] | None = None,
    ) -> None:
        """Warm the cache in the background. Failures are logged, not raised."""
        key = descriptor.cache_key
        if self._fresh_entry(key) is not None or self.in_flight(descriptor):
            return

        task = asyncio.create_task(self.resolve(descriptor, parse=parse))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        # The shared load logs its own failure; just mark the outcome retrieved.
        task.add_done_callback(_retrieve_outcome)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Physically remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items() if not entry.is_fresh(now, self._ttl)
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            log.debug("request_cache_swept", removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop every entry.

        In-flight loads stay registered, so callers arriving after the clear
        still join them instead of starting a second upstream call. Those
        loads settle their waiters but no longer write into the cache.
        """
        with self._lock:
            self._entries.clear()
            self._generation += 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fresh_entry(self, key: str) -> CacheEntry[Any] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(self._clock(), self._ttl):
                return entry
        return None

    async def _load(
        self,
        key: str,
        url: str,
        generation: int,
        parse: Callable[[Any], Any] | None,
    ) -> Any:
        try:
            value = await self._fetch_with_retry(url)
            if parse is not None:
                value = parse(value)
            with self._lock:
                if generation == self._generation:
                    self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
            return value
        finally:
            with self._lock:
                if self._pending.get(key) is asyncio.current_task():
                    del self._pending[key]

    async def _fetch_with_retry(self, url: str) -> Any:
        attempt = 1
        while True:
            try:
                return await self._fetcher.fetch_json(url, self._timeout)
            except BookshelfError as exc:
                if attempt >= self._retry.attempts or not is_transient(exc):
                    raise
                log.warning(
                    "request_retry_scheduled",
                    url=url,
                    attempt=attempt,
                    code=exc.code,
                    status_code=exc.status_code,
                    delay=self._retry.delay_seconds,
                )
            await asyncio.sleep(self._retry.delay_seconds)
            attempt += 1

    @staticmethod
    def _log_failed_load(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, BookshelfError):
            log.warning(
                "request_load_failed",
                code=exc.code,
                status_code=exc.status_code,
                message=exc.message,
            )
        elif exc is not None:
            log.error("request_load_crashed", exc_info=exc)


def _retrieve_outcome(task: asyncio.Task[Any]) -> None:
    if not task.cancelled():
        task.exception()
