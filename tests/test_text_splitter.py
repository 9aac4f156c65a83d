"""Tests for the text splitter."""
import pytest

from study_ingest.errors import InvalidConfiguration
from study_ingest.text_splitter import Boundary, TextSplitter, tokenize

from conftest import words


def stitch(chunks):
    """Join chunks after dropping each chunk's leading overlap."""
    pieces = []
    for chunk in chunks:
        pieces.extend(chunk.text.split()[chunk.overlap_words:])
    return " ".join(pieces)


def normalize(text):
    return " ".join(text.split())


class TestTokenize:
    """Tests for word boundary detection."""

    def test_boundaries(self):
        tokens = tokenize("One two. Three\n\nFour")
        assert [t.text for t in tokens] == ["One", "two.", "Three", "Four"]
        assert tokens[0].boundary == Boundary.WORD
        assert tokens[1].boundary == Boundary.SENTENCE
        assert tokens[2].boundary == Boundary.PARAGRAPH
        assert tokens[3].boundary == Boundary.PARAGRAPH

    def test_abbreviation_is_not_sentence_end(self):
        tokens = tokenize("See Dr. Smith")
        assert tokens[0].boundary == Boundary.WORD
        assert tokens[1].boundary == Boundary.WORD


class TestTextSplitter:
    """Tests for TextSplitter."""

    @pytest.mark.parametrize("chunk_size,overlap", [(10, 0), (10, 3), (50, 49), (300, 50), (7, 6)])
    def test_stitching_reconstructs_source(self, chunk_size, overlap):
        text = words("w", 173, sentence_length=7) + "\n\n" + words("p", 91, sentence_length=13)
        chunks = TextSplitter(chunk_size=chunk_size, overlap=overlap).split(text)
        assert stitch(chunks) == normalize(text)

    @pytest.mark.parametrize("chunk_size,overlap", [(10, 3), (40, 15), (300, 50)])
    def test_consecutive_chunks_share_exact_overlap(self, chunk_size, overlap):
        text = words("w", 650, sentence_length=9)
        chunks = TextSplitter(chunk_size=chunk_size, overlap=overlap).split(text)

        assert chunks[0].overlap_words == 0
        for previous, current in zip(chunks, chunks[1:]):
            assert current.overlap_words == overlap
            assert current.text.split()[:overlap] == previous.text.split()[-overlap:]

    def test_chunks_never_exceed_size(self):
        text = words("w", 1000, sentence_length=17)
        chunks = TextSplitter(chunk_size=120, overlap=20).split(text)
        assert all(0 < chunk.word_count <= 120 for chunk in chunks)
        assert chunks[-1].word_end == 1000

    def test_indices_are_sequential(self):
        chunks = TextSplitter(chunk_size=50, overlap=10).split(words("w", 400))
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_short_text_is_single_chunk(self):
        chunks = TextSplitter(chunk_size=100, overlap=10).split("Just a few words here.")
        assert len(chunks) == 1
        assert chunks[0].text == "Just a few words here."
        assert chunks[0].overlap_words == 0

    def test_prefers_paragraph_break(self):
        text = words("a", 30, sentence_length=5) + "\n\n" + words("b", 30, sentence_length=5)
        chunks = TextSplitter(chunk_size=40, overlap=0).split(text)
        assert chunks[0].text.split()[-1] == "a29."
        assert chunks[1].text.split()[0] == "b0"

    def test_prefers_sentence_end_over_hard_cut(self):
        text = words("s", 100, sentence_length=8)
        chunks = TextSplitter(chunk_size=20, overlap=0).split(text)
        # Sentences end every 8 words, so the cut lands after word 16
        assert chunks[0].word_count == 16
        assert chunks[0].text.endswith("s15.")

    def test_hard_cut_without_boundaries(self):
        text = " ".join(f"x{i}" for i in range(50))
        chunks = TextSplitter(chunk_size=20, overlap=5).split(text)
        assert chunks[0].word_count == 20
        assert chunks[1].word_count == 20

    def test_keeps_paragraph_breaks_in_chunk_text(self):
        chunks = TextSplitter(chunk_size=100, overlap=0).split("First para.\n\nSecond para.")
        assert chunks[0].text == "First para.\n\nSecond para."

    def test_char_offsets_point_into_source(self):
        text = "alpha beta gamma.\n\ndelta epsilon zeta eta theta."
        chunks = TextSplitter(chunk_size=4, overlap=1).split(text)
        for chunk in chunks:
            assert text[chunk.char_start:chunk.char_end].split() == chunk.text.split()
        assert text[chunks[1].new_char_start:].startswith("delta")

    def test_iter_chunks_is_restartable(self):
        splitter = TextSplitter(chunk_size=30, overlap=5)
        text = words("w", 200)
        assert [c.text for c in splitter.iter_chunks(text)] == [c.text for c in splitter.iter_chunks(text)]

    @pytest.mark.parametrize("chunk_size,overlap", [(50, 50), (10, 20), (0, 0), (-5, 0), (10, -1)])
    def test_invalid_configuration(self, chunk_size, overlap):
        with pytest.raises(InvalidConfiguration):
            TextSplitter(chunk_size=chunk_size, overlap=overlap)

    @pytest.mark.parametrize("text", ["", "   \n\n  ", None])
    def test_empty_text(self, text):
        with pytest.raises(InvalidConfiguration):
            TextSplitter(chunk_size=10, overlap=2).split(text)
