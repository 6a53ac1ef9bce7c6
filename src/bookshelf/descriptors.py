"""Request descriptors and cache-key normalisation.

A descriptor names one catalogue request: a resource path plus query
parameters. Equivalent descriptors must share one cache key, so
normalisation:
  1. Canonicalises the path to ``/segment/.../`` (leading and trailing slash)
  2. Drops empty parameter values
  3. Drops parameters equal to the upstream's implicit default (page=1, sort=popular)
  4. Sorts the remainder by (name, value)

Normalisation is pure: no clock, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit

if TYPE_CHECKING:
    from collections.abc import Iterable

LISTING_PATH = "/books/"

# Parameters whose value matches what the upstream assumes when they are absent.
DEFAULT_PARAMS: dict[str, str] = {
    "page": "1",
    "sort": "popular",
}


def normalise_path(path: str) -> str:
    """``'books'`` / ``'/books'`` / ``'//books/'`` → ``'/books/'``."""
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return "/"
    return "/" + "/".join(segments) + "/"


def normalise_params(params: Iterable[tuple[str, str]]) -> tuple[tuple[str, str], ...]:
    kept = []
    for name, value in params:
        name = name.strip()
        value = str(value).strip()
        if not name or not value:
            continue
        if DEFAULT_PARAMS.get(name) == value:
            continue
        kept.append((name, value))
    return tuple(sorted(kept))


@dataclass(frozen=True)
class RequestDescriptor:
    """A catalogue request: resource path plus query parameters."""

    path: str
    params: tuple[tuple[str, str], ...] = ()

    @classmethod
    def build(cls, path: str, params: Iterable[tuple[str, str]] = ()) -> RequestDescriptor:
        """Create an already-normalised descriptor."""
        return cls(path=normalise_path(path), params=normalise_params(params))

    @classmethod
    def from_url(cls, url: str) -> RequestDescriptor:
        """Build a descriptor from an absolute or relative URL.

        Scheme and host are discarded; upstream ``next``/``previous`` links
        therefore map onto the same keys as locally built queries.
        """
        parts = urlsplit(url)
        return cls.build(parts.path, parse_qsl(parts.query, keep_blank_values=True))

    @classmethod
    def for_book(cls, book_id: int) -> RequestDescriptor:
        return cls.build(f"{LISTING_PATH}{book_id}/")

    @property
    def cache_key(self) -> str:
        path = normalise_path(self.path)
        params = normalise_params(self.params)
        if not params:
            return path
        return f"{path}?{urlencode(params)}"

    def url(self, base_url: str) -> str:
        return base_url.rstrip("/") + self.cache_key
