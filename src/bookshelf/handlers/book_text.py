"""Handler that proxies a book's raw plain text.

The archive does not serve cross-origin requests, so readers fetch the text
through this handler. The id is validated before any upstream call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from bookshelf.errors import BookshelfError, ErrorCode
from bookshelf.models.handlers import BookIdInput

if TYPE_CHECKING:
    from bookshelf.cancellation import CancelToken
    from bookshelf.state import AppState

# Shared caches may keep the text for a day and serve it stale for a week.
CACHE_CONTROL = "public, s-maxage=86400, stale-while-revalidate=604800"


async def handle(
    book_id: str,
    state: AppState,
    *,
    cancel: CancelToken | None = None,
) -> str:
    """Handle a raw-text request. Returns the text body."""
    log = structlog.get_logger().bind(handler="book_text", book_id=book_id)
    log.info("handler_called")

    try:
        validated = BookIdInput(book_id=book_id)
    except ValueError as exc:
        raise BookshelfError(
            code=ErrorCode.INVALID_INPUT,
            message="Invalid book ID",
            suggestion="Book ids are positive integers, e.g. /books/1342/text.",
            recoverable=False,
        ) from exc

    return await state.catalog.get_book_text(validated.book_id, cancel=cancel)
