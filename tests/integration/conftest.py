"""Integration test fixtures.

Provides a fully wired AppState (real fetcher, caches and catalog) around an
httpx client, plus a scripted upstream for the HTTP server tests. Book record
fixtures come from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import pytest

from bookshelf.config import Settings
from bookshelf.server import build_app_state, create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from bookshelf.state import AppState


def _test_settings() -> Settings:
    return Settings(upstream={"retry_delay_seconds": 0})


@pytest.fixture()
async def app_state() -> AsyncGenerator[AppState, None]:
    """AppState whose client goes through respx when a test enables it."""
    async with httpx.AsyncClient() as client:
        yield build_app_state(_test_settings(), client)


class FakeUpstream:
    """Scripted catalogue and archive for httpx.MockTransport.

    Routes map an exact URL to a status plus Response kwargs
    or to an exception to raise. Unknown URLs answer 404. Route URLs
    go through httpx.URL so their escaping matches the requests.
    """

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, dict[str, Any]] | Exception] = {}
        self.calls: list[str] = []

    def add(self, url: str, status: int = 200, **kwargs: Any) -> None:
        self.routes[str(httpx.URL(url))] = (status, kwargs)

    def fail(self, url: str, exc: Exception) -> None:
        self.routes[str(httpx.URL(url))] = exc

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, json={"detail": "Not found."})
        if isinstance(route, Exception):
            raise route
        status, kwargs = route
        return httpx.Response(status, **kwargs)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
async def client(upstream: FakeUpstream) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client for the ASGI app, wired to the scripted upstream."""
    transport = httpx.MockTransport(upstream.handle)
    async with httpx.AsyncClient(transport=transport) as upstream_client:
        app = create_app(build_app_state(_test_settings(), upstream_client))
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
        ) as test_client:
            yield test_client
