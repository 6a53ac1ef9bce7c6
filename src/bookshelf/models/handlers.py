from __future__ import annotations

import re

from pydantic import BaseModel, field_validator

_BOOK_ID_RE = re.compile(r"^\d+$")


class BookIdInput(BaseModel):
    book_id: int

    @field_validator("book_id", mode="before")
    @classmethod
    def validate_book_id(cls, v: object) -> int:
        raw = str(v).strip() if isinstance(v, str) else v
        if isinstance(raw, bool) or not (
            isinstance(raw, int) or (isinstance(raw, str) and _BOOK_ID_RE.match(raw))
        ):
            raise ValueError(f"book id must be a positive integer, got {v!r}")
        book_id = int(raw)
        if book_id <= 0:
            raise ValueError(f"book id must be a positive integer, got {v!r}")
        return book_id


def split_csv(raw: str | None) -> list[str]:
    """``"1, 2,,3"`` → ``["1", "2", "3"]``."""
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]
