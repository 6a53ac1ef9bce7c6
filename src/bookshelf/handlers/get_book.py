"""Handler for single-book metadata."""

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
    """Handle a metadata request for one book."""
    log = structlog.get_logger().bind(handler="get_book", book_id=book_id)
    log.info("handler_called")

    try:
        validated = BookIdInput(book_id=book_id)
    except ValueError as exc:
        raise BookshelfError(
            code=ErrorCode.INVALID_INPUT,
            message="Invalid book ID",
            suggestion="Book ids are positive integers, e.g. /books/1342.",
            recoverable=False,
        ) from exc

    book = await state.catalog.get_book(validated.book_id, cancel=cancel)
    output = book.model_dump(mode="json")
    output["text_url"] = book.text_url
    output["cover_url"] = book.cover_url
    return output
