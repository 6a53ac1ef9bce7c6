"""Application state container.

AppState is created once at server startup (inside the Starlette lifespan
context manager) and handed to every request handler. Each process owns its
own caches; nothing here is shared across processes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from bookshelf.catalog import Catalog
    from bookshelf.config import Settings
    from bookshelf.content_cache import BoundedContentCache
    from bookshelf.protocols import FetcherProtocol
    from bookshelf.request_cache import KeyedRequestCache


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every handler."""

    settings: Settings
    http_client: httpx.AsyncClient
    fetcher: FetcherProtocol
    request_cache: KeyedRequestCache
    content_cache: BoundedContentCache
    catalog: Catalog
