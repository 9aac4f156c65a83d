"""
Records shared across the pipeline: documents, chapters, concepts, chunks,
vector records and the retrieval payloads built from them.
"""
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def chunk_id_for(document_id: str, sequence_index: int) -> str:
    """Stable chunk identifier; re-processing with the same index overwrites."""
    return f"{document_id}-chunk-{sequence_index}"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"


class SummaryLevel(str, Enum):
    BRIEF = "brief"
    STANDARD = "standard"
    DETAILED = "detailed"


class ConceptCategory(str, Enum):
    DEFINITION = "DEFINITION"
    THEORY = "THEORY"
    FORMULA = "FORMULA"
    PROCESS = "PROCESS"
    PERSON = "PERSON"
    EVENT = "EVENT"
    TERM = "TERM"
    OTHER = "OTHER"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "ConceptCategory":
        """Map free-form model output onto the closed enumeration, OTHER when unknown."""
        if not value:
            return cls.OTHER
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.OTHER


# =========================================================================
# Records owned by the document store
# =========================================================================

@dataclass
class Document:
    """An uploaded study material and its processing state."""
    document_id: str
    title: str
    file_path: str
    mime_type: str
    file_size: int = 0
    status: DocumentStatus = DocumentStatus.PENDING
    page_count: int = 0
    author: Optional[str] = None
    whole_summary: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        data = dict(data)
        data["status"] = DocumentStatus(data.get("status", DocumentStatus.PENDING.value))
        return cls(**data)


@dataclass
class PracticeQuestion:
    question: str
    answer: str

    def to_dict(self) -> Dict[str, Any]:
        return {"question": self.question, "answer": self.answer}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeQuestion":
        return cls(question=str(data.get("question", "")), answer=str(data.get("answer", "")))


@dataclass
class Chapter:
    """One chapter of a document; (document_id, number) is unique."""
    document_id: str
    number: int
    title: str
    page_start: int = 0
    page_end: int = 0
    summary_brief: str = ""
    summary_standard: str = ""
    summary_detailed: str = ""
    practice_questions: List[PracticeQuestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["practice_questions"] = [q.to_dict() for q in self.practice_questions]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chapter":
        data = dict(data)
        data["practice_questions"] = [
            PracticeQuestion.from_dict(q) for q in data.get("practice_questions", [])
        ]
        return cls(**data)


@dataclass
class ConceptDraft:
    """Concept as returned by the summarization collaborator, before normalisation."""
    term: str
    definition: str
    category: Optional[str] = None


@dataclass
class Concept:
    document_id: str
    term: str
    definition: str
    category: ConceptCategory = ConceptCategory.OTHER
    chapter_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Concept":
        data = dict(data)
        data["category"] = ConceptCategory.normalize(data.get("category"))
        return cls(**data)


@dataclass
class Chunk:
    """Row of the chunk lookup table; the authoritative copy of chunk text."""
    chunk_id: str
    document_id: str
    sequence_index: int
    text: str
    page_number: int = 0
    chapter_number: int = 0
    token_count: int = 0
    char_start: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(**data)


# =========================================================================
# Pipeline intermediates
# =========================================================================

@dataclass
class ExtractedDocument:
    text: str
    page_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChapterSpan:
    """Character span of a detected chapter inside the extracted text."""
    number: int
    title: str
    start_index: int
    end_index: int


@dataclass
class VectorRecord:
    """
    Vector index entry. Metadata is limited to document_id, page_number and
    chapter_number; chunk text lives in the chunk lookup table only.
    """
    id: str
    values: List[float]
    metadata: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}

    @classmethod
    def for_chunk(cls, chunk: Chunk, values: List[float]) -> "VectorRecord":
        return cls(
            id=chunk.chunk_id,
            values=values,
            metadata={
                "document_id": chunk.document_id,
                "page_number": chunk.page_number,
                "chapter_number": chunk.chapter_number,
            },
        )


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedChunk:
    """A chunk resolved from the lookup table with its similarity score."""
    chunk_id: str
    text: str
    page_number: int
    chapter_number: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnswerResult:
    answer: str
    citations: List[str]
    relevant_pages: List[int]
    chunks: List[RetrievedChunk]

    @property
    def scores(self) -> List[float]:
        return [c.score for c in self.chunks]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "citations": self.citations,
            "relevant_pages": self.relevant_pages,
            "chunks": [c.to_dict() for c in self.chunks],
        }


@dataclass
class ProcessingReport:
    """Outcome of one processing run; degraded_stages lists optional stages that fell back."""
    document_id: str
    status: DocumentStatus
    chapters: int = 0
    chunks: int = 0
    vectors_indexed: int = 0
    embedding_failures: int = 0
    degraded_stages: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.status == DocumentStatus.READY and bool(self.degraded_stages)

    def mark_degraded(self, stage: str) -> None:
        if stage not in self.degraded_stages:
            self.degraded_stages.append(stage)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
