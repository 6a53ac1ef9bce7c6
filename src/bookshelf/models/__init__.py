from __future__ import annotations

from bookshelf.models.cache import CacheEntry, ContentCacheEntry
from bookshelf.models.catalog import (
    TEXT_FORMAT_PRIORITY,
    Book,
    Listing,
    ListingQuery,
    Person,
    select_text_url,
)
from bookshelf.models.handlers import BookIdInput
from bookshelf.models.reader import Chapter, ParseResult

__all__ = [
    # catalog
    "Book",
    "Person",
    "Listing",
    "ListingQuery",
    "TEXT_FORMAT_PRIORITY",
    "select_text_url",
    # cache
    "CacheEntry",
    "ContentCacheEntry",
    # reader
    "Chapter",
    "ParseResult",
    # handlers
    "BookIdInput",
]
