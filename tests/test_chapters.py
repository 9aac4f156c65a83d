"""Tests for chapter detection."""
from study_ingest.chapters import FALLBACK_TITLE, chapter_at, detect_chapters


class TestDetectChapters:
    """Tests for detect_chapters."""

    def test_chapter_headings(self):
        text = "Chapter 1: Intro\nalpha beta\nChapter 2: Core\ngamma delta"
        chapters = detect_chapters(text)

        assert [(c.number, c.title) for c in chapters] == [(1, "Intro"), (2, "Core")]
        assert chapters[0].start_index == 0
        assert chapters[0].end_index == chapters[1].start_index
        assert chapters[1].end_index == len(text)
        assert text[chapters[1].start_index:].startswith("Chapter 2")

    def test_case_insensitive_with_period(self):
        chapters = detect_chapters("CHAPTER 3. Cells\ntext\nchapter 4 Tissues\nmore")
        assert [(c.number, c.title) for c in chapters] == [(3, "Cells"), (4, "Tissues")]

    def test_numbered_headings(self):
        text = "1. Foundations\nsome text\n2. Methods\nmore text"
        assert [c.title for c in detect_chapters(text)] == ["Foundations", "Methods"]

    def test_chapter_pattern_wins_over_numbered(self):
        text = "Chapter 1: Intro\n1. First point\n2. Second point\nChapter 2: Next"
        assert [c.number for c in detect_chapters(text)] == [1, 2]

    def test_heading_must_start_line(self):
        text = "As shown in chapter 2: the cell, osmosis matters."
        chapters = detect_chapters(text)
        assert len(chapters) == 1
        assert chapters[0].title == FALLBACK_TITLE

    def test_duplicate_numbers_keep_first(self):
        text = (
            "Chapter 1: Intro\nChapter 2: Core\n"
            "Chapter 1: Intro\nbody one\n"
            "Chapter 2: Core\nbody two"
        )
        chapters = detect_chapters(text)

        assert [c.number for c in chapters] == [1, 2]
        assert chapters[0].start_index == 0
        assert chapters[1].end_index == len(text)

    def test_fallback_single_chapter(self):
        text = "No headings at all in this text."
        chapters = detect_chapters(text)

        assert len(chapters) == 1
        assert chapters[0].number == 1
        assert chapters[0].title == FALLBACK_TITLE
        assert (chapters[0].start_index, chapters[0].end_index) == (0, len(text))


class TestChapterAt:
    def test_lookup(self):
        text = "Preface\nChapter 1: A\nxx\nChapter 2: B\nyy"
        chapters = detect_chapters(text)

        assert chapter_at(chapters, 0) == 0
        assert chapter_at(chapters, chapters[0].start_index) == 1
        assert chapter_at(chapters, chapters[1].start_index + 2) == 2
        assert chapter_at(chapters, len(text) + 10) == 2
