"""Resilient HTTP fetcher for catalogue metadata and book texts.

All network I/O goes through a single Fetcher instance. The Fetcher receives
an httpx.AsyncClient via constructor injection; the lifespan owns the
client lifecycle.

Every call carries a hard deadline and an optional CancelToken. The fetcher
never retries by itself: call sites apply a RetryPolicy because metadata and
full-text downloads want different behaviour.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlparse

import httpx
import structlog

from bookshelf.cancellation import wait_unless_cancelled
from bookshelf.errors import BookshelfError, ErrorCode

if TYPE_CHECKING:
    from collections.abc import Iterable

    from bookshelf.cancellation import CancelToken
    from bookshelf.config import UpstreamSettings

log = structlog.get_logger()

PRIVATE_NETWORKS: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
]


def build_http_client(settings: UpstreamSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=False,
        # Backstop only; Fetcher enforces per-call deadlines itself.
        timeout=httpx.Timeout(settings.text_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def _base_domain(hostname: str) -> str:
    """Return the last two DNS labels: ``'www.gutenberg.org'`` → ``'gutenberg.org'``."""
    parts = hostname.rstrip(".").split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else hostname


def build_allowlist(domains: Iterable[str]) -> frozenset[str]:
    """Reduce configured upstream hosts to their base domains."""
    return frozenset(_base_domain(domain.strip().lower()) for domain in domains if domain.strip())


def is_url_allowed(url: str, allowlist: frozenset[str]) -> bool:
    """Check whether a URL may be fetched.

    Private IP ranges are blocked unconditionally, regardless of allowlist.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    hostname = parsed.hostname or ""

    try:
        addr = ipaddress.ip_address(hostname)
        if any(addr in net for net in PRIVATE_NETWORKS):
            return False
    except ValueError:
        pass  # hostname is a domain name, not an IP

    return _base_domain(hostname) in allowlist


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a call site makes and how long it waits between them."""

    attempts: int = 2
    delay_seconds: float = 1.2

    @classmethod
    def from_settings(cls, settings: UpstreamSettings) -> RetryPolicy:
        return cls(attempts=settings.retry_attempts, delay_seconds=settings.retry_delay_seconds)


def is_transient(exc: BookshelfError) -> bool:
    """Deadline and 5xx failures are worth one more try; anything else is not."""
    if exc.code == ErrorCode.TIMEOUT:
        return True
    if exc.code == ErrorCode.UPSTREAM_HTTP_ERROR:
        return exc.status_code is not None and exc.status_code >= 500
    return False


def _timeout_error(url: str, timeout: float) -> BookshelfError:
    return BookshelfError(
        code=ErrorCode.TIMEOUT,
        message=f"No response from {url} within {timeout:g}s",
        suggestion="The upstream service is slow right now. Try again shortly.",
        recoverable=True,
    )


class Fetcher:
    """HTTP fetcher with deadlines, cancellation, and allowlisted redirects."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        allowlist: frozenset[str],
        max_redirects: int = 5,
    ) -> None:
        self._client = client
        self._allowlist = allowlist
        self._max_redirects = max_redirects

    async def fetch(
        self,
        url: str,
        timeout: float,
        *,
        cancel: CancelToken | None = None,
    ) -> str:
        """Fetch a URL and return its body as text.

        Raises BookshelfError with TIMEOUT, CANCELLED, UPSTREAM_HTTP_ERROR,
        NETWORK_ERROR or URL_NOT_ALLOWED.
        """
        response = await self._request(url, timeout, cancel)
        return response.text

    async def fetch_json(
        self,
        url: str,
        timeout: float,
        *,
        cancel: CancelToken | None = None,
    ) -> Any:
        """Fetch a URL and decode its body as JSON."""
        response = await self._request(url, timeout, cancel)
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise BookshelfError(
                code=ErrorCode.UPSTREAM_HTTP_ERROR,
                message=f"Malformed JSON from {url}",
                suggestion="The catalogue returned an unexpected response. Try again later.",
                recoverable=True,
                status_code=response.status_code,
            ) from exc

    async def _request(
        self,
        url: str,
        timeout: float,
        cancel: CancelToken | None,
    ) -> httpx.Response:
        """Run one GET under a deadline, abandoning it if ``cancel`` fires."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            async with asyncio.timeout(timeout):
                return await wait_unless_cancelled(self._get(url), cancel)
        except TimeoutError as exc:
            log.warning("fetch_timeout", url=url, timeout=timeout)
            raise _timeout_error(url, timeout) from exc
        except BookshelfError as exc:
            if exc.code == ErrorCode.CANCELLED:
                log.info("fetch_cancelled", url=url)
            raise

    async def _get(self, url: str) -> httpx.Response:
        """GET with per-hop allowlist validation of redirects."""
        current_url = url

        try:
            for hop in range(self._max_redirects + 1):
                if not is_url_allowed(current_url, self._allowlist):
                    log.warning("url_blocked", url=current_url, reason="not_in_allowlist")
                    raise BookshelfError(
                        code=ErrorCode.URL_NOT_ALLOWED,
                        message=f"URL not in allowlist: {current_url}",
                        suggestion="Only the configured catalogue and text archive hosts are permitted.",
                        recoverable=False,
                    )

                response = await self._client.get(current_url)

                if response.is_redirect and "location" in response.headers:
                    if hop == self._max_redirects:
                        raise BookshelfError(
                            code=ErrorCode.UPSTREAM_HTTP_ERROR,
                            message=f"Too many redirects fetching {url}",
                            suggestion="The upstream URL has an unusually long redirect chain.",
                            recoverable=False,
                            status_code=response.status_code,
                        )
                    current_url = urljoin(current_url, response.headers["location"])
                    continue

                if not response.is_success:
                    status = response.status_code
                    raise BookshelfError(
                        code=ErrorCode.UPSTREAM_HTTP_ERROR,
                        message=f"HTTP {status} fetching {url}",
                        suggestion=(
                            "The upstream service may be temporarily unavailable."
                            if status >= 500 or status == 429
                            else "The upstream service rejected the request."
                        ),
                        recoverable=status >= 500 or status == 429,
                        status_code=status,
                    )

                log.info(
                    "fetch_complete",
                    url=url,
                    status_code=response.status_code,
                    content_length=len(response.content),
                )
                return response

        except BookshelfError:
            raise
        except httpx.TimeoutException as exc:
            raise BookshelfError(
                code=ErrorCode.TIMEOUT,
                message=f"Transport timeout fetching {url}: {exc}",
                suggestion="The upstream service is slow right now. Try again shortly.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise BookshelfError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Network error fetching {url}: {exc}",
                suggestion="The upstream service may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        # Unreachable but satisfies the type checker
        raise BookshelfError(
            code=ErrorCode.UPSTREAM_HTTP_ERROR,
            message="Redirect loop",
            suggestion="",
            recoverable=False,
        )
