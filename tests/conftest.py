"""Shared pytest fixtures for study-ingest tests."""
import hashlib
import json
import pytest
from unittest.mock import MagicMock

from study_ingest.assistant import StudyAssistant, SynthesizedAnswer
from study_ingest.embedding import EmbeddingBatch
from study_ingest.errors import InputTooLarge, ProviderUnavailable
from study_ingest.extraction import Extractor
from study_ingest.models import ConceptDraft, ExtractedDocument, PracticeQuestion
from study_ingest.pipeline import PipelineOrchestrator
from study_ingest.search_cache import SearchCache
from study_ingest.store import InMemoryRecordStore
from study_ingest.text_splitter import TextSplitter
from study_ingest.vector_store import InMemoryVectorStore


def pytest_addoption(parser):
    """Add command line options for integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires API credentials)"
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires --run-integration)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="Need --run-integration to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# =========================================================================
# Fakes for external collaborators
# =========================================================================

class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class HashingEmbedder:
    """
    Deterministic bag-of-words embedder.

    Texts sharing words get similar vectors. ``reject`` marks texts that
    fail with InputTooLarge.
    """

    def __init__(self, dimensions: int = 32, reject=None):
        self.dimensions = dimensions
        self.reject = reject or (lambda text: False)
        self.calls = []

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    def embed(self, text: str):
        self.calls.append(text)
        if self.reject(text):
            raise InputTooLarge("too many tokens")
        vector = [0.0] * self.dimensions
        for word in text.lower().split():
            digest = hashlib.md5(word.strip(".,?!").encode()).digest()
            vector[digest[0] % self.dimensions] += 1.0
        return vector

    def embed_batch(self, texts):
        vectors, failures = [], {}
        for i, text in enumerate(texts):
            try:
                vectors.append(self.embed(text))
            except InputTooLarge as e:
                vectors.append(None)
                failures[i] = e
        return EmbeddingBatch(vectors=vectors, failures=failures)

    def close(self):
        pass


class ScriptedAssistant(StudyAssistant):
    """Canned replies; ``fail`` makes every call raise ProviderUnavailable."""

    def __init__(self, fail: bool = False, clock: FakeClock = None):
        self.fail = fail
        self.clock = clock
        self.calls = []

    def _record(self, name):
        self.calls.append((name, self.clock() if self.clock else None))
        if self.fail:
            raise ProviderUnavailable("throttled", provider_name="bedrock")

    def summarize(self, text, detail_level):
        self._record("summarize:" + detail_level.value)
        return f"{detail_level.value} summary ({len(text.split())} words)"

    def extract_concepts(self, text):
        self._record("extract_concepts")
        return [
            ConceptDraft(term="Osmosis", definition="Movement of water", category="process"),
            ConceptDraft(term="Cell", definition="Unit of life", category="organelle"),
        ]

    def generate_questions(self, text, count):
        self._record("generate_questions")
        return [PracticeQuestion(question=f"Question {i}?", answer=f"Answer {i}") for i in range(count)]

    def answer(self, question, context, history=None):
        self._record("answer")
        if context:
            return SynthesizedAnswer(answer="From the material: " + question, citations=["Page 1"])
        return SynthesizedAnswer(answer="From general knowledge: " + question, citations=[])


class TextExtractor(Extractor):
    """Returns fixed text for every file, or fails."""

    def __init__(self, text: str = "", page_count: int = 1, error: Exception = None):
        self.text = text
        self.page_count = page_count
        self.error = error
        self.calls = []

    def extract(self, file_path, mime_type=None):
        self.calls.append((file_path, mime_type))
        if self.error is not None:
            raise self.error
        return ExtractedDocument(text=self.text, page_count=self.page_count, metadata={"author": "A. Author"})


def words(prefix: str, count: int, sentence_length: int = 10) -> str:
    """``count`` distinct words with a full stop every ``sentence_length`` words."""
    out = []
    for i in range(count):
        word = f"{prefix}{i}"
        if (i + 1) % sentence_length == 0:
            word += "."
        out.append(word)
    return " ".join(out)


# =========================================================================
# Fixtures
# =========================================================================

@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def memory_vector_store():
    return InMemoryVectorStore(dimensions=32)


@pytest.fixture
def two_chapter_text():
    """Two chapters of 400 words each."""
    return (
        "Chapter 1: Intro\n"
        + words("intro", 400)
        + "\nChapter 2: Core\n"
        + words("core", 400)
    )


@pytest.fixture
def sample_upload(tmp_path):
    path = tmp_path / "biology.txt"
    path.write_text("placeholder upload")
    return str(path)


@pytest.fixture
def make_orchestrator(record_store, embedder, memory_vector_store, fake_clock):
    """Factory for an orchestrator wired to in-memory fakes."""
    def factory(extractor, assistant=None, vector_store=None, chunk_size=300, overlap=50, cache=None):
        return PipelineOrchestrator(
            record_store=record_store,
            extractor=extractor,
            embedding_client=embedder,
            vector_store=vector_store if vector_store is not None else memory_vector_store,
            assistant=assistant,
            splitter=TextSplitter(chunk_size=chunk_size, overlap=overlap),
            cache=cache if cache is not None else SearchCache(clock=fake_clock),
            questions_per_chapter=3,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
    return factory


# =========================================================================
# Bedrock / Unstructured payloads
# =========================================================================

def claude_response(text: str):
    """Mock invoke_model response from Claude."""
    body = MagicMock()
    body.read.return_value = json.dumps({"content": [{"type": "text", "text": text}]})
    return {"body": body}


@pytest.fixture
def sample_elements():
    """Sample document elements from Unstructured."""
    return [
        {
            "type": "Title",
            "text": "Introduction",
            "metadata": {"page_number": 1}
        },
        {
            "type": "NarrativeText",
            "text": "This is the first paragraph of the document. It contains important information.",
            "metadata": {"page_number": 1}
        },
        {
            "type": "Table",
            "text": "Header1 | Header2\nValue1 | Value2",
            "metadata": {"page_number": 2}
        },
        {
            "type": "Image",
            "text": "",
            "metadata": {"page_number": 3, "filetype": "png"}
        }
    ]
