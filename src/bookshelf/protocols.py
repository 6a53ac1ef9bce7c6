"""Protocol interfaces for swappable components.

The catalog, caches and AppState reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight fakes that count upstream calls
- Alternative transports to be swapped in without changing call sites
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from bookshelf.cancellation import CancelToken


class FetcherProtocol(Protocol):
    """Interface for the resilient HTTP fetcher."""

    async def fetch(
        self,
        url: str,
        timeout: float,
        *,
        cancel: CancelToken | None = None,
    ) -> str: ...

    async def fetch_json(
        self,
        url: str,
        timeout: float,
        *,
        cancel: CancelToken | None = None,
    ) -> Any: ...
