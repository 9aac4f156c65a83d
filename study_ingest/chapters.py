"""
Chapter boundary detection over extracted text.

Headings are matched at the start of a line. Patterns are tried in order
and the first one that matches anything wins. Repeated chapter numbers
(tables of contents, running headers) keep their first occurrence; the
text under a discarded heading stays with the preceding chapter.
"""
import re
from typing import List

from .models import ChapterSpan

CHAPTER_PATTERNS = [
    re.compile(r"^[ \t]*chapter\s+(\d+)[:.\s]+([^\n]+)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^[ \t]*(\d+)\.\s+([A-Z][^\n]+)", re.MULTILINE),
]

FALLBACK_TITLE = "Full Document"


def detect_chapters(text: str) -> List[ChapterSpan]:
    """
    Split text into chapter spans.

    Args:
        text: Extracted document text

    Returns:
        Chapters in document order, numbers unique. A single synthetic
        chapter covering the whole text when no heading is found.
    """
    for pattern in CHAPTER_PATTERNS:
        matches = list(pattern.finditer(text))
        if not matches:
            continue

        kept = []
        seen = set()
        for match in matches:
            number = int(match.group(1))
            if number in seen:
                continue
            seen.add(number)
            kept.append((number, match.group(2).strip(), match.start()))

        chapters = []
        for i, (number, title, start) in enumerate(kept):
            end = kept[i + 1][2] if i + 1 < len(kept) else len(text)
            chapters.append(ChapterSpan(number=number, title=title, start_index=start, end_index=end))
        return chapters

    return [ChapterSpan(number=1, title=FALLBACK_TITLE, start_index=0, end_index=len(text))]


def chapter_at(chapters: List[ChapterSpan], char_index: int) -> int:
    """Number of the chapter containing ``char_index``; 0 for text before every chapter."""
    for chapter in chapters:
        if chapter.start_index <= char_index < chapter.end_index:
            return chapter.number
    if chapters and char_index >= chapters[-1].end_index:
        return chapters[-1].number
    return 0
