"""Chapter segmenter for plain-text books.

Turns a raw archive download into an ordered list of titled chapters:

  1. Strip the archive's licence header and footer using known marker lines
  2. Pick the first heading vocabulary (CHAPTER, Chapter, BOOK, PART, ACT,
     SCENE) with at least MIN_HEADING_MATCHES line-anchored matches
  3. Split on that vocabulary; text before the first heading becomes "Preface"
  4. With no usable vocabulary, group whole paragraphs into "Section N"
     chunks of roughly SECTION_CHAR_THRESHOLD characters

Pure function of its input: no I/O, no module state mutated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bookshelf.models.reader import Chapter, ParseResult

START_MARKERS: tuple[str, ...] = (
    "*** START OF THE PROJECT GUTENBERG",
    "*** START OF THIS PROJECT GUTENBERG",
    "***START OF THE PROJECT GUTENBERG",
)

END_MARKERS: tuple[str, ...] = (
    "*** END OF THE PROJECT GUTENBERG",
    "*** END OF THIS PROJECT GUTENBERG",
    "***END OF THE PROJECT GUTENBERG",
    "End of the Project Gutenberg",
    "End of Project Gutenberg",
)

MIN_HEADING_MATCHES = 2
SECTION_CHAR_THRESHOLD = 5000
PREFACE_TITLE = "Preface"

_NUMERAL = r"[IVXLCDM\d]+"


@dataclass(frozen=True)
class HeadingPattern:
    name: str
    regex: re.Pattern[str]


def _heading(keyword: str, flags: int) -> re.Pattern[str]:
    # Single capture group: re.split keeps the heading line as its own fragment.
    return re.compile(rf"^({keyword}\s+{_NUMERAL}\.?.*)", flags | re.MULTILINE)


# Evaluated in order; the first with enough matches wins and is never merged
# with another vocabulary.
HEADING_PATTERNS: tuple[HeadingPattern, ...] = (
    HeadingPattern("CHAPTER", _heading("CHAPTER", re.IGNORECASE)),
    HeadingPattern("Chapter", _heading("Chapter", 0)),
    HeadingPattern("BOOK", _heading("BOOK", re.IGNORECASE)),
    HeadingPattern("PART", _heading("PART", re.IGNORECASE)),
    HeadingPattern("ACT", _heading("ACT", re.IGNORECASE)),
    HeadingPattern("SCENE", _heading("SCENE", re.IGNORECASE)),
)

_IS_HEADING_RE = re.compile(r"^(CHAPTER|BOOK|PART|ACT|SCENE)\s+", re.IGNORECASE)
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_NEWLINE_RE = re.compile(r"\r?\n")


def strip_boilerplate(raw_text: str) -> str:
    """Remove the archive header and footer and trim surrounding whitespace.

    Everything through the end of the first start-marker line is dropped, as
    is everything from the first end marker onward. Text without markers is
    returned whole (trimmed).
    """
    text = raw_text.replace("\r\n", "\n")

    for marker in START_MARKERS:
        idx = text.find(marker)
        if idx != -1:
            line_end = text.find("\n", idx)
            text = "" if line_end == -1 else text[line_end + 1 :]
            break

    for marker in END_MARKERS:
        idx = text.find(marker)
        if idx != -1:
            text = text[:idx]
            break

    return text.strip()


def select_heading_pattern(text: str) -> HeadingPattern | None:
    """Return the first heading vocabulary with enough matches, or None."""
    for pattern in HEADING_PATTERNS:
        count = 0
        for _ in pattern.regex.finditer(text):
            count += 1
            if count >= MIN_HEADING_MATCHES:
                return pattern
    return None


def segment(raw_text: str) -> ParseResult:
    """Split a raw book download into chapters.

    Returns an empty result when nothing is left after stripping boilerplate.
    """
    text = strip_boilerplate(raw_text)

    chapters: list[Chapter] = []
    pattern = select_heading_pattern(text)
    if pattern is not None:
        chapters = _split_by_headings(text, pattern)

    if not chapters:
        chapters = _split_by_length(text)

    return ParseResult.from_chapters(chapters)


def _split_by_headings(text: str, pattern: HeadingPattern) -> list[Chapter]:
    parts = [part for part in pattern.regex.split(text) if part]
    chapters: list[Chapter] = []

    i = 0
    while i < len(parts):
        part = parts[i].strip()
        if not part:
            i += 1
            continue

        if _IS_HEADING_RE.match(part):
            title = _NEWLINE_RE.sub(" ", part).strip()
            if i + 1 < len(parts):
                chapters.append(Chapter(title=title, content=parts[i + 1].strip()))
                i += 2
                continue
            chapters.append(Chapter(title=title, content=""))
        elif not chapters:
            # Front matter before the first heading
            chapters.append(Chapter(title=PREFACE_TITLE, content=part))
        i += 1

    return chapters


def _split_by_length(text: str) -> list[Chapter]:
    chapters: list[Chapter] = []
    section = 1
    current = ""

    for paragraph in _PARAGRAPH_BREAK_RE.split(text):
        if current and len(current) + len(paragraph) > SECTION_CHAR_THRESHOLD:
            chapters.append(Chapter(title=f"Section {section}", content=current))
            section += 1
            current = ""
        stripped = paragraph.strip()
        current = f"{current}\n\n{stripped}" if current else stripped

    if current:
        chapters.append(Chapter(title=f"Section {section}", content=current))

    return chapters
