"""Handler for catalogue listings.

Receives AppState, validates the query string into a ListingQuery and
delegates to the catalog. No Starlette imports; server.py handles the
HTTP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from bookshelf.errors import BookshelfError, ErrorCode
from bookshelf.models.catalog import ListingQuery
from bookshelf.models.handlers import split_csv

if TYPE_CHECKING:
    from collections.abc import Mapping

    from bookshelf.cancellation import CancelToken
    from bookshelf.state import AppState


async def handle(
    params: Mapping[str, str],
    state: AppState,
    *,
    cancel: CancelToken | None = None,
) -> dict:
    """Handle a listing request."""
    log = structlog.get_logger().bind(handler="list_books")
    log.info("handler_called", params=dict(params))

    try:
        query = ListingQuery(
            search=params.get("search", ""),
            topic=params.get("topic", ""),
            sort=params.get("sort", "popular"),
            page=params.get("page", "1"),
            ids=split_csv(params.get("ids")),
            languages=split_csv(params.get("languages")),
            mime_type=params.get("mime_type", "text/plain"),
        )
    except ValueError as exc:
        raise BookshelfError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion=(
                "Use page >= 1, sort in popular/ascending/descending, "
                "comma-separated numeric ids and two-letter language codes."
            ),
            recoverable=False,
        ) from exc

    listing = await state.catalog.get_listing(query, cancel=cancel)
    log.info("listing_complete", count=listing.count, returned=len(listing.results))
    return listing.model_dump(mode="json")
