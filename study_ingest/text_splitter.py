"""
Hierarchical text splitter producing overlapping, word-counted chunks.

Sizes are measured in **words** (whitespace-delimited tokens). Each chunk
after the first starts with exactly ``overlap`` words repeated from the end
of the previous chunk, followed by new words. Cut points prefer a paragraph
break, then a sentence end, and fall back to a hard cut between words.
Dropping the leading overlap from every chunk but the first and joining the
rest gives back the source text modulo whitespace.
"""
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, List

from .errors import InvalidConfiguration

_WORD_RE = re.compile(r"\S+")
_SENTENCE_END_RE = re.compile(r"[.!?][\"'”’)\]]*$")

# Periods after these do not end a sentence ("Dr. Smith", "e.g. this")
_ABBREVIATIONS = frozenset({
    "dr", "mr", "mrs", "ms", "prof", "jr", "sr", "st", "vs", "etc", "e.g",
    "i.e", "fig", "eq", "no", "vol", "ch", "sec", "approx", "cf", "al",
})


class Boundary(IntEnum):
    """Strength of the break that follows a word."""
    WORD = 1
    SENTENCE = 2
    PARAGRAPH = 3


@dataclass
class _Word:
    text: str
    start: int
    end: int
    boundary: Boundary


@dataclass
class TextChunk:
    """
    One window of the source text.

    ``word_start``/``word_end`` index the source's word sequence (end
    exclusive); ``new_word_start`` is the first word not shared with the
    previous chunk. Character offsets point into the original text.
    """
    index: int
    text: str
    word_start: int
    word_end: int
    new_word_start: int
    char_start: int
    char_end: int
    new_char_start: int

    @property
    def word_count(self) -> int:
        return self.word_end - self.word_start

    @property
    def overlap_words(self) -> int:
        return self.new_word_start - self.word_start


def _is_sentence_end(word: str) -> bool:
    if not _SENTENCE_END_RE.search(word):
        return False
    stem = word.rstrip(".!?\"'”’)]").lower()
    return stem not in _ABBREVIATIONS


def tokenize(text: str) -> List[_Word]:
    """Split text into words annotated with the boundary that follows each one."""
    matches = list(_WORD_RE.finditer(text))
    words: List[_Word] = []
    for i, match in enumerate(matches):
        if i + 1 == len(matches):
            boundary = Boundary.PARAGRAPH
        elif text.count("\n", match.end(), matches[i + 1].start()) >= 2:
            boundary = Boundary.PARAGRAPH
        elif _is_sentence_end(match.group()):
            boundary = Boundary.SENTENCE
        else:
            boundary = Boundary.WORD
        words.append(_Word(match.group(), match.start(), match.end(), boundary))
    return words


class TextSplitter:
    """
    Overlapping splitter that backs off from paragraph to sentence to word breaks.

    Args:
        chunk_size: Maximum words per chunk, overlap included
        overlap: Words repeated at the start of every chunk after the first
    """

    def __init__(self, chunk_size: int = 250, overlap: int = 75):
        if chunk_size <= 0:
            raise InvalidConfiguration(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise InvalidConfiguration(f"overlap cannot be negative, got {overlap}")
        if chunk_size <= overlap:
            raise InvalidConfiguration(
                f"chunk_size ({chunk_size}) must be larger than overlap ({overlap})"
            )
        self.chunk_size = chunk_size
        self.overlap = overlap

    def split(self, text: str) -> List[TextChunk]:
        """
        Split text into ordered overlapping chunks.

        Args:
            text: Source text

        Returns:
            Chunks in source order

        Raises:
            InvalidConfiguration: If the text holds no words
        """
        return list(self.iter_chunks(text))

    def iter_chunks(self, text: str) -> Iterator[TextChunk]:
        """Lazy form of :meth:`split`; every call starts from the beginning."""
        words = tokenize(text or "")
        if not words:
            raise InvalidConfiguration("Cannot split empty text")
        return self._generate(words)

    def _generate(self, words: List[_Word]) -> Iterator[TextChunk]:
        position = 0
        index = 0
        while position < len(words):
            overlap = 0 if index == 0 else self.overlap
            capacity = self.chunk_size - overlap
            # The first chunk must be long enough to supply the next chunk's overlap
            minimum = max(1, capacity // 2, self.overlap if index == 0 else 0)
            end = self._find_cut(words, position, capacity, minimum)
            start = position - overlap
            yield TextChunk(
                index=index,
                text=self._render(words, start, end),
                word_start=start,
                word_end=end,
                new_word_start=position,
                char_start=words[start].start,
                char_end=words[end - 1].end,
                new_char_start=words[position].start,
            )
            position = end
            index += 1

    @staticmethod
    def _find_cut(words: List[_Word], start: int, capacity: int, minimum: int) -> int:
        """End index (exclusive) for new words beginning at ``start``."""
        if len(words) - start <= capacity:
            return len(words)
        earliest = start + min(minimum, capacity)
        latest = start + capacity
        for level in (Boundary.PARAGRAPH, Boundary.SENTENCE):
            for end in range(latest, earliest - 1, -1):
                if words[end - 1].boundary >= level:
                    return end
        return latest

    @staticmethod
    def _render(words: List[_Word], start: int, end: int) -> str:
        parts = []
        for i in range(start, end):
            parts.append(words[i].text)
            if i + 1 < end:
                parts.append("\n\n" if words[i].boundary == Boundary.PARAGRAPH else " ")
        return "".join(parts)
