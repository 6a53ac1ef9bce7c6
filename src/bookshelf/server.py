"""HTTP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the Starlette lifespan context manager
- Register routes and translate BookshelfError into HTTP responses
- Start uvicorn
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import structlog
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

import bookshelf.handlers.book_text as h_book_text
import bookshelf.handlers.get_book as h_get_book
import bookshelf.handlers.list_books as h_list_books
import bookshelf.handlers.read_book as h_read_book
from bookshelf import __version__
from bookshelf.cancellation import CancelToken
from bookshelf.catalog import Catalog
from bookshelf.config import Settings
from bookshelf.content_cache import BoundedContentCache
from bookshelf.errors import BookshelfError, ErrorCode
from bookshelf.fetcher import Fetcher, RetryPolicy, build_allowlist, build_http_client
from bookshelf.request_cache import KeyedRequestCache
from bookshelf.schedulers import run_cache_sweeper
from bookshelf.state import AppState
from bookshelf.transport import SecurityHeadersMiddleware, run_http_server

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    import httpx
    from starlette.requests import Request

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def build_app_state(settings: Settings, http_client: httpx.AsyncClient) -> AppState:
    """Wire fetcher, caches and catalog around an existing HTTP client."""
    upstream = settings.upstream
    catalog_host = urlparse(upstream.catalog_url).hostname or ""
    fetcher = Fetcher(
        http_client,
        build_allowlist([*upstream.allowed_domains, catalog_host]),
        max_redirects=upstream.max_redirects,
    )
    request_cache = KeyedRequestCache(
        fetcher,
        base_url=upstream.catalog_url,
        ttl_seconds=settings.cache.listing_ttl_minutes * 60,
        timeout_seconds=upstream.metadata_timeout_seconds,
        retry=RetryPolicy.from_settings(upstream),
    )
    content_cache = BoundedContentCache(
        max_entries=settings.cache.content_max_entries,
        ttl_seconds=settings.cache.content_ttl_hours * 3600,
    )
    catalog = Catalog(
        fetcher,
        request_cache,
        content_cache,
        text_timeout_seconds=upstream.text_timeout_seconds,
    )
    return AppState(
        settings=settings,
        http_client=http_client,
        fetcher=fetcher,
        request_cache=request_cache,
        content_cache=content_cache,
        catalog=catalog,
    )


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__, catalog_url=settings.upstream.catalog_url)

    http_client = build_http_client(settings.upstream)
    state = build_app_state(settings, http_client)
    app.state.bookshelf = state

    sweeper_task = asyncio.create_task(run_cache_sweeper(state))

    log.info(
        "server_started",
        version=__version__,
        content_cache_entries=settings.cache.content_max_entries,
    )

    try:
        yield
    finally:
        sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper_task
        await http_client.aclose()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.BOOK_NOT_FOUND: 404,
    ErrorCode.NO_READABLE_FORMAT: 404,
    ErrorCode.UPSTREAM_HTTP_ERROR: 502,
    ErrorCode.NETWORK_ERROR: 502,
    ErrorCode.URL_NOT_ALLOWED: 502,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.CANCELLED: 503,
}


def _error_response(error: BookshelfError) -> JSONResponse:
    """Convert a BookshelfError to the JSON error envelope."""
    return JSONResponse(error.to_dict(), status_code=_STATUS_BY_CODE.get(error.code, 500))


def _internal_error_response() -> JSONResponse:
    return JSONResponse(
        {
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "Internal server error",
                "suggestion": "Try again later.",
                "recoverable": True,
            }
        },
        status_code=500,
    )


async def _watch_disconnect(request: Request, token: CancelToken) -> None:
    """Fire ``token`` when the client goes away."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            token.cancel("client disconnected")
            return


async def _dispatch(
    request: Request,
    handler: str,
    call: Callable[[AppState, CancelToken], Awaitable[Response]],
) -> Response:
    state: AppState = request.app.state.bookshelf
    token = CancelToken()
    watcher = asyncio.create_task(_watch_disconnect(request, token))
    try:
        return await call(state, token)
    except BookshelfError as exc:
        log.warning(
            "handler_error",
            handler=handler,
            path_params=request.path_params,
            code=exc.code,
            status_code=exc.status_code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _error_response(exc)
    except Exception:
        log.error(
            "handler_unexpected_error",
            handler=handler,
            path_params=request.path_params,
            exc_info=True,
        )
        return _internal_error_response()
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


async def list_books(request: Request) -> Response:
    async def call(state: AppState, token: CancelToken) -> Response:
        result = await h_list_books.handle(request.query_params, state, cancel=token)
        return JSONResponse(result)

    return await _dispatch(request, "list_books", call)


async def get_book(request: Request) -> Response:
    async def call(state: AppState, token: CancelToken) -> Response:
        result = await h_get_book.handle(request.path_params["book_id"], state, cancel=token)
        return JSONResponse(result)

    return await _dispatch(request, "get_book", call)


async def book_text(request: Request) -> Response:
    async def call(state: AppState, token: CancelToken) -> Response:
        text = await h_book_text.handle(request.path_params["book_id"], state, cancel=token)
        return PlainTextResponse(
            text,
            headers={"Cache-Control": h_book_text.CACHE_CONTROL},
        )

    return await _dispatch(request, "book_text", call)


async def read_book(request: Request) -> Response:
    async def call(state: AppState, token: CancelToken) -> Response:
        result = await h_read_book.handle(request.path_params["book_id"], state, cancel=token)
        return JSONResponse(result)

    return await _dispatch(request, "read_book", call)


async def health(request: Request) -> Response:
    return JSONResponse({"status": "ok", "version": __version__})


ROUTES = [
    Route("/health", health, methods=["GET"]),
    Route("/books", list_books, methods=["GET"]),
    Route("/books/{book_id}", get_book, methods=["GET"]),
    Route("/books/{book_id}/text", book_text, methods=["GET"]),
    Route("/books/{book_id}/chapters", read_book, methods=["GET"]),
]


def create_app(state: AppState | None = None) -> Starlette:
    """Build the ASGI app.

    Passing ``state`` skips the lifespan wiring; tests use this to inject a
    pre-built AppState.
    """
    app = Starlette(
        routes=ROUTES,
        middleware=[Middleware(SecurityHeadersMiddleware)],
        lifespan=None if state is not None else lifespan,
    )
    if state is not None:
        app.state.bookshelf = state
    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)
    run_http_server(create_app(), settings)


if __name__ == "__main__":
    main()
