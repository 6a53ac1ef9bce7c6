"""Shared test fixtures for the bookshelf test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest


class FakeClock:
    """Manually advanced stand-in for ``time.monotonic``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """Scripted fetcher that records every upstream call.

    ``outcomes`` are consumed in order (the last one repeats). An outcome that
    is an exception is raised instead of returned. When ``gate`` is set, each
    call blocks until the gate opens, which lets tests pile up concurrent
    callers on one in-flight load.
    """

    def __init__(self, *outcomes: Any, gate: asyncio.Event | None = None) -> None:
        self.outcomes = list(outcomes) or [{}]
        self.gate = gate
        self.calls: list[str] = []

    def _next(self) -> Any:
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def fetch_json(self, url: str, timeout: float, *, cancel: Any = None) -> Any:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        return self._next()

    async def fetch(self, url: str, timeout: float, *, cancel: Any = None) -> str:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        return self._next()


def _make_book(book_id: int = 1342, formats: dict[str, str] | None = None, **extra: Any) -> dict:
    """Catalogue JSON for one book, shaped like the upstream API's records."""
    if formats is None:
        formats = {
            "text/html": f"https://www.gutenberg.org/ebooks/{book_id}.html.images",
            "text/plain; charset=us-ascii": f"https://www.gutenberg.org/ebooks/{book_id}.txt.utf-8",
            "image/jpeg": f"https://www.gutenberg.org/cache/epub/{book_id}/pg{book_id}.cover.medium.jpg",
        }
    book = {
        "id": book_id,
        "title": "Pride and Prejudice",
        "authors": [{"name": "Austen, Jane", "birth_year": 1775, "death_year": 1817}],
        "translators": [],
        "subjects": ["Courtship -- Fiction"],
        "bookshelves": ["Best Books Ever Listings"],
        "languages": ["en"],
        "copyright": False,
        "media_type": "Text",
        "formats": formats,
        "download_count": 54000,
    }
    book.update(extra)
    return book


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sample_book() -> dict:
    return _make_book()


@pytest.fixture()
def make_book() -> Callable[..., dict]:
    """Factory for catalogue book records."""
    return _make_book


@pytest.fixture()
def make_fetcher() -> type[FakeFetcher]:
    """The scripted fetcher class; call it with outcomes."""
    return FakeFetcher
