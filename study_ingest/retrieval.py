"""
Question answering over one document's indexed chunks.

Search is read-through cached: the cache is consulted first, and on a miss
the query is embedded, the vector index is searched with a ``document_id``
filter, and the returned ids are resolved to text through the chunk lookup
table. The vector index holds no text.
"""
from typing import Dict, List, Optional, Sequence

from .assistant import StudyAssistant
from .embedding import EmbeddingClient
from .errors import DocumentNotReady, QuestionValidationError
from .log import get_logger
from .models import AnswerResult, DocumentStatus, RetrievedChunk
from .search_cache import SearchCache
from .store import RecordStore
from .vector_store import VectorStore

logger = get_logger(__name__)


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    """
    Render retrieved chunks as the prompt context.

    Example:
        [Page 3] first chunk text

        [Page 7] second chunk text
    """
    return "\n\n".join(f"[Page {chunk.page_number}] {chunk.text}" for chunk in chunks)


class RetrievalService:
    """Cached semantic search and answer synthesis for a single document."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_store: VectorStore,
        record_store: RecordStore,
        cache: Optional[SearchCache] = None,
        assistant: Optional[StudyAssistant] = None,
        top_k: int = 5,
        max_question_length: int = 1000,
    ):
        """
        Initialize the retrieval service.

        Args:
            embedding_client: Embeds queries
            vector_store: Index searched with a document filter
            record_store: Chunk lookup table and document records
            cache: Search results cache, skipped when None
            assistant: Answer synthesis; without one only retrieval works
            top_k: Chunks retrieved per question
            max_question_length: Longest accepted question in characters
        """
        self.embedding_client = embedding_client
        self.vector_store = vector_store
        self.record_store = record_store
        self.cache = cache
        self.assistant = assistant
        self.top_k = top_k
        self.max_question_length = max_question_length

    def search(self, query: str, document_id: str, top_k: Optional[int] = None) -> List[RetrievedChunk]:
        """
        Semantic search restricted to one document.

        Args:
            query: Search query
            document_id: Document whose chunks are searched
            top_k: Number of results, defaults to the service setting

        Returns:
            Chunks ordered by descending similarity. Ids missing from the
            chunk lookup table are dropped.
        """
        top_k = self.top_k if top_k is None else top_k
        depth = max(top_k, self.top_k)

        if self.cache is not None:
            cached = self.cache.get(query, document_id, depth=top_k)
            if cached is not None:
                return cached[:top_k]

        query_vector = self.embedding_client.embed(query)
        matches = self.vector_store.query(query_vector, top_k=depth, filters={"document_id": document_id})

        chunks = self.record_store.get_chunks(match.id for match in matches)
        results = []
        for match in matches:
            chunk = chunks.get(match.id)
            if chunk is None:
                logger.warning("chunk_lookup_missing", document_id=document_id, chunk_id=match.id)
                continue
            results.append(RetrievedChunk(
                chunk_id=chunk.chunk_id,
                text=chunk.text,
                page_number=chunk.page_number,
                chapter_number=chunk.chapter_number,
                score=match.score,
            ))
        results.sort(key=lambda r: r.score, reverse=True)

        if self.cache is not None:
            self.cache.set(query, document_id, results, depth=depth)
        logger.debug("search_complete", document_id=document_id, matches=len(results))
        return results[:top_k]

    def validate_question(self, question: str) -> str:
        question = (question or "").strip()
        if not question:
            raise QuestionValidationError("Question must not be empty")
        if len(question) > self.max_question_length:
            raise QuestionValidationError(
                f"Question is longer than {self.max_question_length} characters"
            )
        return question

    def answer_question(
        self,
        document_id: str,
        question: str,
        history: Optional[Sequence[Dict[str, str]]] = None,
    ) -> AnswerResult:
        """
        Answer a question from a document's content.

        A failed search degrades to an empty context; the assistant then
        answers from general knowledge.

        Args:
            document_id: Document to answer from
            question: The student's question
            history: Earlier turns as {"role", "content"} dicts

        Returns:
            AnswerResult with the answer, citations, pages and ranked chunks

        Raises:
            QuestionValidationError: Empty or overlong question
            DocumentNotFound: Unknown document
            DocumentNotReady: Document is still being processed
        """
        question = self.validate_question(question)
        document = self.record_store.get_document(document_id)
        if document.status == DocumentStatus.PROCESSING:
            raise DocumentNotReady(f"Document {document_id} is still processing")

        try:
            chunks = self.search(question, document_id)
        except Exception as e:
            logger.warning("search_failed", document_id=document_id, error=str(e), exc_info=True)
            chunks = []

        context = build_context(chunks)
        relevant_pages = sorted({chunk.page_number for chunk in chunks})

        if self.assistant is None:
            return AnswerResult(answer=context, citations=[], relevant_pages=relevant_pages, chunks=chunks)

        synthesized = self.assistant.answer(question, context, history)
        logger.info(
            "question_answered",
            document_id=document_id,
            chunks=len(chunks),
            citations=len(synthesized.citations),
        )
        return AnswerResult(
            answer=synthesized.answer,
            citations=synthesized.citations,
            relevant_pages=relevant_pages,
            chunks=chunks,
        )
