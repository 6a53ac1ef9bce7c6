"""Explicit cancellation tokens for upstream calls.

A ``CancelToken`` is handed down from the caller into fetch and cache
calls. Firing it makes every wait that observes the token end promptly
with ``ErrorCode.CANCELLED``, which callers can tell apart from a
deadline expiry.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

from bookshelf.errors import BookshelfError, ErrorCode

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise cancelled_error(self)


def cancelled_error(token: CancelToken) -> BookshelfError:
    reason = f": {token.reason}" if token.reason else ""
    return BookshelfError(
        code=ErrorCode.CANCELLED,
        message=f"Request cancelled by caller{reason}",
        suggestion="The caller abandoned the request; retry if the result is still needed.",
        recoverable=True,
    )


async def wait_unless_cancelled(awaitable: Awaitable[T], token: CancelToken | None) -> T:
    """Await ``awaitable`` but give up as soon as ``token`` fires.

    Giving up cancels the awaitable's task. Wrap it in ``asyncio.shield``
    first when the underlying work must outlive this caller.
    """
    if token is None:
        return await awaitable

    token.raise_if_cancelled()
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()

    if work.done():
        return work.result()

    work.cancel()
    with suppress(asyncio.CancelledError, Exception):
        await work
    raise cancelled_error(token)
