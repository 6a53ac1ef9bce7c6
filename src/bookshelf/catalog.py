"""Retrieval facade over the catalogue API and the text archive.

Composes the fetcher, the keyed request cache (listings and metadata) and the
bounded content cache (raw book texts) into the operations the HTTP handlers
need. No Starlette imports; server.py handles the HTTP wiring.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import ValidationError

from bookshelf.descriptors import RequestDescriptor
from bookshelf.errors import BookshelfError, ErrorCode
from bookshelf.models.catalog import Book, Listing, ListingQuery
from bookshelf.segmenter import segment

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bookshelf.cancellation import CancelToken
    from bookshelf.content_cache import BoundedContentCache
    from bookshelf.models.reader import ParseResult
    from bookshelf.protocols import FetcherProtocol
    from bookshelf.request_cache import KeyedRequestCache

log = structlog.get_logger()

M = TypeVar("M", Book, Listing)


class Catalog:
    """Listing, metadata and readable-text retrieval with caching."""

    def __init__(
        self,
        fetcher: FetcherProtocol,
        request_cache: KeyedRequestCache,
        content_cache: BoundedContentCache,
        *,
        text_timeout_seconds: float,
    ) -> None:
        self._fetcher = fetcher
        self._request_cache = request_cache
        self._content_cache = content_cache
        self._text_timeout = text_timeout_seconds

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def get_listing(
        self,
        query: ListingQuery,
        *,
        cancel: CancelToken | None = None,
    ) -> Listing:
        return await self._request_cache.resolve(
            query.to_descriptor(), parse=_parse_listing, cancel=cancel
        )

    async def get_listing_page(
        self,
        url: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Listing:
        """Follow an upstream ``next``/``previous`` link through the cache."""
        return await self._request_cache.resolve(
            RequestDescriptor.from_url(url), parse=_parse_listing, cancel=cancel
        )

    def get_cached_listing(self, query: ListingQuery) -> Listing | None:
        """Instant read for first paint; never touches the network."""
        payload = self._request_cache.get(query.to_descriptor())
        if payload is None:
            return None
        return _parse(Listing, payload, what="listing")

    def seed_listing(self, query: ListingQuery, listing: Listing) -> None:
        """Store a listing obtained by another path (e.g. server-side first load)."""
        self._request_cache.put(query.to_descriptor(), listing)

    def prefetch_listing(self, query: ListingQuery) -> None:
        self._request_cache.prefetch(query.to_descriptor(), parse=_parse_listing)

    async def get_listings(self, queries: Sequence[ListingQuery]) -> list[Listing]:
        """Fetch several listings concurrently.

        A query that fails yields an empty listing in its slot; order matches
        ``queries``.
        """
        results = await asyncio.gather(
            *(self.get_listing(query) for query in queries),
            return_exceptions=True,
        )

        listings: list[Listing] = []
        for query, result in zip(queries, results, strict=True):
            if isinstance(result, BookshelfError):
                log.warning(
                    "listing_failed",
                    topic=query.topic,
                    search=query.search,
                    code=result.code,
                    message=result.message,
                )
                listings.append(Listing.empty())
            elif isinstance(result, BaseException):
                raise result
            else:
                listings.append(result)
        return listings

    async def get_books_by_ids(
        self,
        ids: Sequence[int],
        *,
        cancel: CancelToken | None = None,
    ) -> list[Book]:
        """Resolve a "recently viewed" id list in one request, keeping input order."""
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []

        listing = await self.get_listing(ListingQuery(ids=wanted), cancel=cancel)
        by_id = {book.id: book for book in listing.results}
        return [by_id[book_id] for book_id in wanted if book_id in by_id]

    # ------------------------------------------------------------------
    # Single books
    # ------------------------------------------------------------------

    async def get_book(
        self,
        book_id: int,
        *,
        cancel: CancelToken | None = None,
    ) -> Book:
        try:
            return await self._request_cache.resolve(
                RequestDescriptor.for_book(book_id),
                parse=partial(_parse, Book, what=f"book {book_id}"),
                cancel=cancel,
            )
        except BookshelfError as exc:
            if exc.code == ErrorCode.UPSTREAM_HTTP_ERROR and exc.status_code == 404:
                raise BookshelfError(
                    code=ErrorCode.BOOK_NOT_FOUND,
                    message=f"Book {book_id} not found.",
                    suggestion="Check the id, or search the catalogue for the title.",
                    recoverable=False,
                ) from exc
            raise

    async def get_book_text(
        self,
        book_id: int,
        *,
        cancel: CancelToken | None = None,
    ) -> str:
        """Return the raw plain text of a book, from memory when possible.

        The text download is not retried: a full book is expensive to pull
        twice, and the call is safe for the caller to repeat.
        """
        bound_log = log.bind(book_id=book_id)

        text = self._content_cache.get(book_id)
        if text is not None:
            bound_log.info("content_cache_hit", chars=len(text))
            return text

        book = await self.get_book(book_id, cancel=cancel)
        text_url = book.text_url
        if text_url is None:
            raise BookshelfError(
                code=ErrorCode.NO_READABLE_FORMAT,
                message="No text format available for this book",
                suggestion="This title is only published in non-text formats.",
                recoverable=False,
            )

        bound_log.info("text_fetching", url=text_url)
        text = await self._fetcher.fetch(text_url, self._text_timeout, cancel=cancel)
        self._content_cache.put(book_id, text)
        bound_log.info("text_cached", chars=len(text))
        return text

    async def get_chapters(
        self,
        book_id: int,
        *,
        cancel: CancelToken | None = None,
    ) -> ParseResult:
        """Return the book split into chapters.

        Segmentation is re-run on every call; only the raw text is cached.
        """
        text = await self.get_book_text(book_id, cancel=cancel)
        result = segment(text)
        log.info("book_segmented", book_id=book_id, total_chapters=result.total_chapters)
        return result


def _parse(model: type[M], payload: object, *, what: str) -> M:
    """Validate an upstream payload; a mismatch is reported as an upstream error."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise BookshelfError(
            code=ErrorCode.UPSTREAM_HTTP_ERROR,
            message=f"Unexpected catalogue response for {what}",
            suggestion="The catalogue returned data in an unknown shape. Try again later.",
            recoverable=False,
        ) from exc


def _parse_listing(payload: object) -> Listing:
    return _parse(Listing, payload, what="listing")
