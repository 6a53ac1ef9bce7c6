from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, PositiveInt, field_validator

from bookshelf.descriptors import LISTING_PATH, RequestDescriptor

# Best plain-text representation first.
TEXT_FORMAT_PRIORITY: tuple[str, ...] = (
    "text/plain; charset=utf-8",
    "text/plain; charset=us-ascii",
    "text/plain",
)
COVER_FORMAT = "image/jpeg"


class Person(BaseModel):
    name: str
    birth_year: int | None = None
    death_year: int | None = None

    @property
    def display_name(self) -> str:
        """Render the catalogue's "Last, First" form as "First Last"."""
        parts = self.name.split(", ")
        if len(parts) == 2:
            return f"{parts[1]} {parts[0]}"
        return self.name


class Book(BaseModel):
    """Single catalogue record as returned by the bibliographic API."""

    id: int
    title: str
    authors: list[Person] = []
    translators: list[Person] = []
    subjects: list[str] = []
    bookshelves: list[str] = []
    languages: list[str] = []
    copyright: bool | None = None
    media_type: str = "Text"
    formats: dict[str, str] = {}
    download_count: int = 0

    @property
    def text_url(self) -> str | None:
        """URL of the best available plain-text format, or None."""
        return select_text_url(self.formats)

    @property
    def cover_url(self) -> str | None:
        return self.formats.get(COVER_FORMAT) or None

    @property
    def display_authors(self) -> str:
        if not self.authors:
            return "Unknown Author"
        return ", ".join(author.display_name for author in self.authors)


class Listing(BaseModel):
    """One page of catalogue results."""

    count: int = 0
    next: str | None = None
    previous: str | None = None
    results: list[Book] = []

    @classmethod
    def empty(cls) -> Listing:
        return cls(count=0, next=None, previous=None, results=[])


class ListingQuery(BaseModel):
    """Filters accepted by the catalogue listing endpoint."""

    search: str = ""
    topic: str = ""
    sort: Literal["popular", "ascending", "descending"] = "popular"
    page: PositiveInt = 1
    ids: list[PositiveInt] = []
    languages: list[str] = []
    mime_type: str = "text/plain"

    @field_validator("search", "topic", "mime_type")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if len(v) > 500:
            raise ValueError("query text must be at most 500 characters")
        return v

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, v: list[str]) -> list[str]:
        normalised = [code.strip().lower() for code in v if code.strip()]
        for code in normalised:
            if not re.match(r"^[a-z]{2}$", code):
                raise ValueError(f"Invalid language code: {code!r}")
        return normalised

    def to_descriptor(self) -> RequestDescriptor:
        params: list[tuple[str, str]] = [
            ("page", str(self.page)),
            ("sort", self.sort),
            ("search", self.search),
            ("topic", self.topic),
            ("mime_type", self.mime_type),
        ]
        if self.ids:
            params.append(("ids", ",".join(str(i) for i in sorted(set(self.ids)))))
        if self.languages:
            params.append(("languages", ",".join(sorted(set(self.languages)))))
        return RequestDescriptor.build(LISTING_PATH, params)


def select_text_url(formats: dict[str, str]) -> str | None:
    """Pick the plain-text URL by charset preference.

    Returns None when no plain-text representation exists.
    """
    for content_type in TEXT_FORMAT_PRIORITY:
        url = formats.get(content_type)
        if url:
            return url
    return None
