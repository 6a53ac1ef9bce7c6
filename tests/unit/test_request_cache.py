"""Unit tests for bookshelf.request_cache."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from bookshelf.cancellation import CancelToken
from bookshelf.descriptors import RequestDescriptor
from bookshelf.errors import BookshelfError, ErrorCode
from bookshelf.fetcher import RetryPolicy
from bookshelf.request_cache import KeyedRequestCache

if TYPE_CHECKING:
    from tests.conftest import FakeClock, FakeFetcher

FICTION = RequestDescriptor.build("/books/", [("topic", "fiction")])
POETRY = RequestDescriptor.build("/books/", [("topic", "poetry")])
LISTING = {"count": 1, "next": None, "previous": None, "results": []}


def _http_error(status: int) -> BookshelfError:
    return BookshelfError(
        code=ErrorCode.UPSTREAM_HTTP_ERROR,
        message=f"HTTP {status}",
        suggestion="",
        recoverable=status >= 500,
        status_code=status,
    )


def _timeout() -> BookshelfError:
    return BookshelfError(code=ErrorCode.TIMEOUT, message="slow", suggestion="", recoverable=True)


def _cache(fetcher: FakeFetcher, clock: FakeClock, ttl: float = 600) -> KeyedRequestCache:
    return KeyedRequestCache(
        fetcher,
        base_url="https://gutendex.com",
        ttl_seconds=ttl,
        timeout_seconds=8,
        retry=RetryPolicy(attempts=2, delay_seconds=0),
        clock=clock,
    )


async def _drain() -> None:
    """Give scheduled tasks a few loop iterations to settle."""
    for _ in range(10):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# get / put
# ---------------------------------------------------------------------------


class TestGetPut:
    def test_miss_returns_none(self, make_fetcher, clock) -> None:
        cache = _cache(make_fetcher(), clock)
        assert cache.get(FICTION) is None

    def test_put_then_get(self, make_fetcher, clock) -> None:
        cache = _cache(make_fetcher(), clock)
        cache.put(FICTION, LISTING)
        assert cache.get(FICTION) == LISTING
        assert len(cache) == 1

    def test_equivalent_descriptors_share_entry(self, make_fetcher, clock) -> None:
        cache = _cache(make_fetcher(), clock)
        cache.put(RequestDescriptor("/books", (("topic", "fiction"), ("page", "1"))), LISTING)
        assert cache.get(FICTION) == LISTING

    def test_entry_expires_after_ttl(self, make_fetcher, clock) -> None:
        cache = _cache(make_fetcher(), clock, ttl=600)
        cache.put(FICTION, LISTING)
        clock.advance(599)
        assert cache.get(FICTION) == LISTING
        clock.advance(1)
        assert cache.get(FICTION) is None


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


class TestResolve:
    async def test_miss_fetches_normalised_url(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        result = await cache.resolve(RequestDescriptor("books", (("topic", "fiction"),)))
        assert result == LISTING
        assert fetcher.calls == ["https://gutendex.com/books/?topic=fiction"]

    async def test_hit_skips_fetch(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        await cache.resolve(FICTION)
        await cache.resolve(FICTION)
        assert len(fetcher.calls) == 1

    async def test_expired_entry_is_refetched(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock, ttl=600)
        await cache.resolve(FICTION)
        clock.advance(601)
        await cache.resolve(FICTION)
        assert len(fetcher.calls) == 2

    async def test_distinct_keys_fetch_separately(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        await cache.resolve(FICTION)
        await cache.resolve(POETRY)
        assert len(fetcher.calls) == 2

    async def test_parsed_value_is_stored(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        result = await cache.resolve(FICTION, parse=lambda payload: payload["count"])
        assert result == 1
        assert cache.get(FICTION) == 1

    async def test_rejected_payload_is_not_stored(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher({"oops": 1}, LISTING)
        cache = _cache(fetcher, clock)

        def count(payload: dict) -> int:
            if "count" not in payload:
                raise _http_error(200)
            return payload["count"]

        with pytest.raises(BookshelfError):
            await cache.resolve(FICTION, parse=count)
        assert cache.get(FICTION) is None

        assert await cache.resolve(FICTION, parse=count) == 1
        assert len(fetcher.calls) == 2


# ---------------------------------------------------------------------------
# Coalescing
# ---------------------------------------------------------------------------


class TestCoalescing:
    async def test_concurrent_misses_share_one_fetch(self, make_fetcher, clock) -> None:
        gate = asyncio.Event()
        fetcher = make_fetcher(LISTING, gate=gate)
        cache = _cache(fetcher, clock)

        tasks = [asyncio.create_task(cache.resolve(FICTION)) for _ in range(5)]
        await _drain()
        assert cache.in_flight(FICTION)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert results == [LISTING] * 5
        assert len(fetcher.calls) == 1
        assert not cache.in_flight(FICTION)

    async def test_shared_failure_reaches_every_caller(self, make_fetcher, clock) -> None:
        gate = asyncio.Event()
        fetcher = make_fetcher(_http_error(404), gate=gate)
        cache = _cache(fetcher, clock)

        tasks = [asyncio.create_task(cache.resolve(FICTION)) for _ in range(3)]
        await _drain()
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, BookshelfError) for r in results)
        assert {r.status_code for r in results} == {404}
        assert len(fetcher.calls) == 1

    async def test_failure_is_not_cached(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_http_error(404), LISTING)
        cache = _cache(fetcher, clock)

        with pytest.raises(BookshelfError):
            await cache.resolve(FICTION)
        assert cache.get(FICTION) is None

        assert await cache.resolve(FICTION) == LISTING
        assert len(fetcher.calls) == 2

    async def test_cancelled_waiter_leaves_shared_load_running(self, make_fetcher, clock) -> None:
        gate = asyncio.Event()
        fetcher = make_fetcher(LISTING, gate=gate)
        cache = _cache(fetcher, clock)
        token = CancelToken()

        abandoned = asyncio.create_task(cache.resolve(FICTION, cancel=token))
        patient = asyncio.create_task(cache.resolve(FICTION))
        await _drain()

        token.cancel("unmounted")
        with pytest.raises(BookshelfError) as exc_info:
            await abandoned
        assert exc_info.value.code == ErrorCode.CANCELLED

        gate.set()
        assert await patient == LISTING
        assert cache.get(FICTION) == LISTING
        assert len(fetcher.calls) == 1

    async def test_task_cancellation_leaves_shared_load_running(self, make_fetcher, clock) -> None:
        gate = asyncio.Event()
        fetcher = make_fetcher(LISTING, gate=gate)
        cache = _cache(fetcher, clock)

        abandoned = asyncio.create_task(cache.resolve(FICTION))
        patient = asyncio.create_task(cache.resolve(FICTION))
        await _drain()

        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        gate.set()
        assert await patient == LISTING
        assert len(fetcher.calls) == 1

    async def test_pre_cancelled_token_never_fetches(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        token = CancelToken()
        token.cancel()

        with pytest.raises(BookshelfError) as exc_info:
            await cache.resolve(FICTION, cancel=token)
        assert exc_info.value.code == ErrorCode.CANCELLED
        assert fetcher.calls == []

    async def test_cached_value_served_even_with_cancelled_token(
        self, make_fetcher, clock
    ) -> None:
        cache = _cache(make_fetcher(), clock)
        cache.put(FICTION, LISTING)
        token = CancelToken()
        token.cancel()
        assert await cache.resolve(FICTION, cancel=token) == LISTING


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    async def test_server_error_retried_once(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_http_error(503), LISTING)
        cache = _cache(fetcher, clock)
        assert await cache.resolve(FICTION) == LISTING
        assert len(fetcher.calls) == 2

    async def test_timeout_retried_once(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_timeout(), LISTING)
        cache = _cache(fetcher, clock)
        assert await cache.resolve(FICTION) == LISTING
        assert len(fetcher.calls) == 2

    async def test_client_error_not_retried(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_http_error(404), LISTING)
        cache = _cache(fetcher, clock)
        with pytest.raises(BookshelfError) as exc_info:
            await cache.resolve(FICTION)
        assert exc_info.value.status_code == 404
        assert len(fetcher.calls) == 1

    async def test_network_error_not_retried(self, make_fetcher, clock) -> None:
        dropped = BookshelfError(
            code=ErrorCode.NETWORK_ERROR, message="reset", suggestion="", recoverable=True
        )
        fetcher = make_fetcher(dropped, LISTING)
        cache = _cache(fetcher, clock)
        with pytest.raises(BookshelfError) as exc_info:
            await cache.resolve(FICTION)
        assert exc_info.value.code == ErrorCode.NETWORK_ERROR
        assert len(fetcher.calls) == 1

    async def test_gives_up_after_second_failure(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_http_error(502), _http_error(503), LISTING)
        cache = _cache(fetcher, clock)
        with pytest.raises(BookshelfError) as exc_info:
            await cache.resolve(FICTION)
        assert exc_info.value.status_code == 503
        assert len(fetcher.calls) == 2

    async def test_single_attempt_policy(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_http_error(500), LISTING)
        cache = KeyedRequestCache(
            fetcher,
            base_url="https://gutendex.com",
            ttl_seconds=600,
            timeout_seconds=8,
            retry=RetryPolicy(attempts=1, delay_seconds=0),
            clock=clock,
        )
        with pytest.raises(BookshelfError):
            await cache.resolve(FICTION)
        assert len(fetcher.calls) == 1


# ---------------------------------------------------------------------------
# Prefetch and maintenance
# ---------------------------------------------------------------------------


class TestPrefetch:
    async def test_prefetch_warms_cache(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        cache.prefetch(FICTION)
        await _drain()
        assert cache.get(FICTION) == LISTING

    async def test_prefetch_failure_is_silent(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(_http_error(404))
        cache = _cache(fetcher, clock)
        cache.prefetch(FICTION)
        await _drain()
        assert cache.get(FICTION) is None
        assert len(fetcher.calls) == 1

    async def test_prefetch_skips_fresh_entry(self, make_fetcher, clock) -> None:
        fetcher = make_fetcher(LISTING)
        cache = _cache(fetcher, clock)
        cache.put(FICTION, LISTING)
        cache.prefetch(FICTION)
        await _drain()
        assert fetcher.calls == []


class TestMaintenance:
    def test_sweep_removes_only_expired(self, make_fetcher, clock) -> None:
        cache = _cache(make_fetcher(), clock, ttl=600)
        cache.put(FICTION, LISTING)
        clock.advance(400)
        cache.put(POETRY, LISTING)
        clock.advance(300)

        assert cache.sweep_expired() == 1
        assert len(cache) == 1
        assert cache.get(POETRY) == LISTING

    def test_clear(self, make_fetcher, clock) -> None:
        cache = _cache(make_fetcher(), clock)
        cache.put(FICTION, LISTING)
        cache.clear()
        assert len(cache) == 0
        assert cache.get(FICTION) is None

    async def test_clear_during_load_does_not_repopulate(self, make_fetcher, clock) -> None:
        gate = asyncio.Event()
        fetcher = make_fetcher(LISTING, gate=gate)
        cache = _cache(fetcher, clock)

        task = asyncio.create_task(cache.resolve(FICTION))
        await _drain()
        cache.clear()
        gate.set()

        assert await task == LISTING
        assert cache.get(FICTION) is None

    async def test_resolve_after_clear_joins_in_flight_load(self, make_fetcher, clock) -> None:
        gate = asyncio.Event()
        fetcher = make_fetcher(LISTING, gate=gate)
        cache = _cache(fetcher, clock)

        first = asyncio.create_task(cache.resolve(FICTION))
        await _drain()
        cache.clear()
        assert cache.in_flight(FICTION)

        second = asyncio.create_task(cache.resolve(FICTION))
        await _drain()
        gate.set()

        assert await first == LISTING
        assert await second == LISTING
        assert len(fetcher.calls) == 1
        assert not cache.in_flight(FICTION)
