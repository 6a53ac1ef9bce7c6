"""Handler for readable chapters.

Fetches (or reuses) the raw text, segments it, and returns the chapter list
with its count.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from bookshelf.errors import BookshelfError, ErrorCode
from bookshelf.models.handlers import BookIdInput

if TYPE_CHECKING:
    from bookshelf.cancellation import CancelToken
    from bookshelf.state import AppState


async def handle(
    book_id: str,
    state: AppState,
    *,
    cancel: CancelToken | None = None,
) -> dict:
    """Handle a chapters request."""
    log = structlog.get_logger().bind(handler="read_book", book_id=book_id)
    log.info("handler_called")

    try:
        validated = BookIdInput(book_id=book_id)
    except ValueError as exc:
        raise BookshelfError(
            code=ErrorCode.INVALID_INPUT,
            message="Invalid book ID",
            suggestion="Book ids are positive integers, e.g. /books/1342/chapters.",
            recoverable=False,
        ) from exc

    result = await state.catalog.get_chapters(validated.book_id, cancel=cancel)
    if result.total_chapters == 0:
        log.warning("no_readable_content")
    return result.model_dump(mode="json", by_alias=True)
