"""
Document / record store: documents, chapters, concepts and the chunk
lookup table.

Chapters are unique per (document_id, number) and upserted; concepts have
no uniqueness and are cleared before re-insertion; chunks are replaced as
a whole per document. ``JsonRecordStore`` persists one JSON file per
document, like the per-document chunk files of the ingest pipeline.
"""
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List

from .errors import DocumentNotFound, DocumentNotReady
from .log import get_logger
from .models import Chapter, Chunk, Concept, Document, DocumentStatus, utcnow

logger = get_logger(__name__)


class RecordStore(ABC):
    """CRUD contract the pipeline relies on."""

    @abstractmethod
    def create_document(self, document: Document) -> Document: ...

    @abstractmethod
    def get_document(self, document_id: str) -> Document: ...

    @abstractmethod
    def update_document(self, document_id: str, **fields: Any) -> Document: ...

    @abstractmethod
    def claim_for_processing(self, document_id: str, force: bool = False) -> Document:
        """
        Move a document to PROCESSING unless a run already holds it.

        Raises:
            DocumentNotFound: Unknown document
            DocumentNotReady: Already PROCESSING and ``force`` is False
        """

    @abstractmethod
    def list_documents(self) -> List[Document]: ...

    @abstractmethod
    def delete_document(self, document_id: str) -> None: ...

    @abstractmethod
    def upsert_chapter(self, chapter: Chapter) -> Chapter: ...

    @abstractmethod
    def list_chapters(self, document_id: str) -> List[Chapter]: ...

    @abstractmethod
    def delete_chapters(self, document_id: str) -> None: ...

    @abstractmethod
    def add_concepts(self, document_id: str, concepts: Iterable[Concept]) -> int: ...

    @abstractmethod
    def list_concepts(self, document_id: str) -> List[Concept]: ...

    @abstractmethod
    def delete_concepts(self, document_id: str) -> None: ...

    @abstractmethod
    def replace_chunks(self, document_id: str, chunks: Iterable[Chunk]) -> int: ...

    @abstractmethod
    def get_chunks(self, chunk_ids: Iterable[str]) -> Dict[str, Chunk]: ...

    @abstractmethod
    def list_chunks(self, document_id: str) -> List[Chunk]: ...

    @abstractmethod
    def delete_chunks(self, document_id: str) -> None: ...

    def document_exists(self, document_id: str) -> bool:
        try:
            self.get_document(document_id)
            return True
        except DocumentNotFound:
            return False

    def close(self) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    """Thread-safe dict-backed store."""

    def __init__(self):
        self._lock = threading.RLock()
        self._documents: Dict[str, Document] = {}
        self._chapters: Dict[str, Dict[int, Chapter]] = {}
        self._concepts: Dict[str, List[Concept]] = {}
        self._chunks: Dict[str, Dict[str, Chunk]] = {}

    def _touch(self, document_id: str) -> None:
        """Hook called after any mutation of a document's records."""

    def _require(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        return document

    # Documents ------------------------------------------------------------

    def create_document(self, document: Document) -> Document:
        with self._lock:
            self._documents[document.document_id] = document
            self._touch(document.document_id)
            return document

    def get_document(self, document_id: str) -> Document:
        with self._lock:
            return self._require(document_id)

    def update_document(self, document_id: str, **fields: Any) -> Document:
        with self._lock:
            document = self._require(document_id)
            for name, value in fields.items():
                if not hasattr(document, name):
                    raise AttributeError(f"Document has no field {name!r}")
                setattr(document, name, value)
            document.updated_at = utcnow()
            self._touch(document_id)
            return document

    def claim_for_processing(self, document_id: str, force: bool = False) -> Document:
        with self._lock:
            document = self._require(document_id)
            if document.status == DocumentStatus.PROCESSING and not force:
                raise DocumentNotReady(f"Document {document_id} is already being processed")
            return self.update_document(document_id, status=DocumentStatus.PROCESSING, error_message=None)

    def list_documents(self) -> List[Document]:
        with self._lock:
            return sorted(self._documents.values(), key=lambda d: d.created_at)

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._require(document_id)
            del self._documents[document_id]
            self._chapters.pop(document_id, None)
            self._concepts.pop(document_id, None)
            self._chunks.pop(document_id, None)
            self._touch(document_id)

    # Chapters -------------------------------------------------------------

    def upsert_chapter(self, chapter: Chapter) -> Chapter:
        with self._lock:
            self._require(chapter.document_id)
            self._chapters.setdefault(chapter.document_id, {})[chapter.number] = chapter
            self._touch(chapter.document_id)
            return chapter

    def list_chapters(self, document_id: str) -> List[Chapter]:
        with self._lock:
            chapters = self._chapters.get(document_id, {})
            return [chapters[number] for number in sorted(chapters)]

    def delete_chapters(self, document_id: str) -> None:
        with self._lock:
            self._chapters.pop(document_id, None)
            self._touch(document_id)

    # Concepts -------------------------------------------------------------

    def add_concepts(self, document_id: str, concepts: Iterable[Concept]) -> int:
        with self._lock:
            self._require(document_id)
            concepts = list(concepts)
            self._concepts.setdefault(document_id, []).extend(concepts)
            self._touch(document_id)
            return len(concepts)

    def list_concepts(self, document_id: str) -> List[Concept]:
        with self._lock:
            return sorted(self._concepts.get(document_id, []), key=lambda c: c.term.lower())

    def delete_concepts(self, document_id: str) -> None:
        with self._lock:
            self._concepts.pop(document_id, None)
            self._touch(document_id)

    # Chunk lookup table ---------------------------------------------------

    def replace_chunks(self, document_id: str, chunks: Iterable[Chunk]) -> int:
        with self._lock:
            self._require(document_id)
            table = {chunk.chunk_id: chunk for chunk in chunks}
            self._chunks[document_id] = table
            self._touch(document_id)
            return len(table)

    def get_chunks(self, chunk_ids: Iterable[str]) -> Dict[str, Chunk]:
        wanted = set(chunk_ids)
        found: Dict[str, Chunk] = {}
        with self._lock:
            for table in self._chunks.values():
                for chunk_id in wanted.intersection(table):
                    found[chunk_id] = table[chunk_id]
        return found

    def list_chunks(self, document_id: str) -> List[Chunk]:
        with self._lock:
            return sorted(self._chunks.get(document_id, {}).values(), key=lambda c: c.sequence_index)

    def delete_chunks(self, document_id: str) -> None:
        with self._lock:
            self._chunks.pop(document_id, None)
            self._touch(document_id)


class JsonRecordStore(InMemoryRecordStore):
    """
    In-memory store mirrored to ``<directory>/<document_id>.json``.

    Each file holds the document with its chapters, concepts and chunks and
    is rewritten atomically after every mutation of that document.
    """

    def __init__(self, directory: str):
        super().__init__()
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self._load()

    def _path(self, document_id: str) -> str:
        return os.path.join(self.directory, f"{document_id}.json")

    def _load(self) -> None:
        for name in sorted(os.listdir(self.directory)):
            if not name.endswith(".json"):
                continue
            with open(os.path.join(self.directory, name), "r") as f:
                data = json.load(f)
            document = Document.from_dict(data["document"])
            document_id = document.document_id
            self._documents[document_id] = document
            self._chapters[document_id] = {
                c["number"]: Chapter.from_dict(c) for c in data.get("chapters", [])
            }
            self._concepts[document_id] = [Concept.from_dict(c) for c in data.get("concepts", [])]
            self._chunks[document_id] = {
                c["chunk_id"]: Chunk.from_dict(c) for c in data.get("chunks", [])
            }
        logger.debug("record_store_loaded", directory=self.directory, documents=len(self._documents))

    def _touch(self, document_id: str) -> None:
        path = self._path(document_id)
        document = self._documents.get(document_id)
        if document is None:
            if os.path.exists(path):
                os.remove(path)
            return

        payload = {
            "document": document.to_dict(),
            "chapters": [c.to_dict() for c in self.list_chapters(document_id)],
            "concepts": [c.to_dict() for c in self._concepts.get(document_id, [])],
            "chunks": [c.to_dict() for c in self.list_chunks(document_id)],
        }
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


def create_record_store(settings) -> RecordStore:
    if settings.store_dir:
        return JsonRecordStore(settings.store_dir)
    return InMemoryRecordStore()
