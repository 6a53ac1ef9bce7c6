"""Background scheduler coroutine for cache sweeping."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from bookshelf.state import AppState

log = structlog.get_logger()


def sweep_caches(state: AppState) -> tuple[int, int]:
    """Drop expired entries from both caches. Returns (requests, texts) removed."""
    requests_removed = state.request_cache.sweep_expired()
    texts_removed = state.content_cache.sweep_expired()
    if requests_removed or texts_removed:
        log.info(
            "cache_sweep_complete",
            requests_removed=requests_removed,
            texts_removed=texts_removed,
        )
    return requests_removed, texts_removed


async def run_cache_sweeper(state: AppState) -> None:
    """Sweep on the configured interval until cancelled.

    Reads check expiry themselves, so the sweep only bounds memory.
    """
    interval_seconds = state.settings.cache.sweep_interval_seconds

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            sweep_caches(state)
        except Exception:
            log.warning("cache_sweep_error", exc_info=True)
