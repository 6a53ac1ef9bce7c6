from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Chapter(BaseModel):
    """One titled slice of a book, in reading order."""

    title: str
    content: str


class ParseResult(BaseModel):
    """Output of the segmenter: ordered chapters plus their count."""

    model_config = ConfigDict(populate_by_name=True)

    chapters: list[Chapter] = []
    total_chapters: int = Field(default=0, alias="totalChapters")

    @model_validator(mode="after")
    def _check_total(self) -> ParseResult:
        if self.total_chapters != len(self.chapters):
            raise ValueError(
                f"total_chapters={self.total_chapters} does not match "
                f"{len(self.chapters)} chapters"
            )
        return self

    @classmethod
    def from_chapters(cls, chapters: list[Chapter]) -> ParseResult:
        return cls(chapters=chapters, total_chapters=len(chapters))
