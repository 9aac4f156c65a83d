"""
Document processing pipeline.

Drives one document through

    PENDING -> PROCESSING -> READY | ERROR

Stages, in order:
1. Extraction (mandatory; failure ends in ERROR)
2. Chapter detection
3. Per-chapter enrichment: three summaries, practice questions, key
   concepts. Strictly sequential with fixed spacing between calls.
4. Chunk, embed and index the full text
5. Whole-document summary from a bounded prefix of the text

Stages 3-5 fall back to placeholders when they fail; the document still
ends READY and the report lists what degraded.
"""
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .assistant import StudyAssistant
from .chapters import chapter_at, detect_chapters
from .embedding import EmbeddingClient
from .errors import DocumentNotReady, ExtractionFailed
from .extraction import Extractor
from .log import get_logger
from .models import (
    Chapter,
    ChapterSpan,
    Chunk,
    Concept,
    ConceptCategory,
    Document,
    DocumentStatus,
    ProcessingReport,
    SummaryLevel,
    VectorRecord,
    chunk_id_for,
    utcnow,
)
from .rate_limit import CallPacer
from .search_cache import SearchCache
from .store import RecordStore
from .text_splitter import TextSplitter
from .vector_store import VectorStore

logger = get_logger(__name__)

SUMMARY_FALLBACK = "Summary generation skipped due to API limits"


def estimate_page(char_index: int, text_length: int, page_count: int) -> int:
    """1-based page holding ``char_index``, assuming pages of equal length."""
    if page_count <= 1 or text_length <= 0:
        return 1
    page = 1 + (char_index * page_count) // text_length
    return max(1, min(page_count, page))


class PipelineOrchestrator:
    """
    Owns every Document status transition.

    Multiple documents may run at once (``process_documents``/``submit``);
    within one document all provider calls go through a single
    ``CallPacer`` and never overlap.
    """

    def __init__(
        self,
        record_store: RecordStore,
        extractor: Extractor,
        embedding_client: EmbeddingClient,
        vector_store: VectorStore,
        assistant: Optional[StudyAssistant] = None,
        splitter: Optional[TextSplitter] = None,
        cache: Optional[SearchCache] = None,
        chapter_delay: float = 2.0,
        step_delay: float = 1.0,
        questions_per_chapter: int = 5,
        summary_prefix_chars: int = 10000,
        max_workers: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            record_store: Documents, chapters, concepts and the chunk lookup table
            extractor: Turns files into text
            embedding_client: Embeds chunk texts
            vector_store: Vector index, possibly a disabled no-op store
            assistant: Summaries, concepts and questions; None skips enrichment
            splitter: Chunker for the full text
            cache: Search cache invalidated whenever a document's vectors change
            chapter_delay: Seconds between the last call for one chapter and the first for the next
            step_delay: Seconds between calls within a chapter
            questions_per_chapter: Practice questions requested per chapter
            summary_prefix_chars: Characters of text used for the whole-document summary
            max_workers: Documents processed concurrently by ``process_documents``/``submit``
            clock: Time source for pacing
            sleep: Sleep function for pacing
        """
        self.record_store = record_store
        self.extractor = extractor
        self.embedding_client = embedding_client
        self.vector_store = vector_store
        self.assistant = assistant
        self.splitter = splitter or TextSplitter()
        self.cache = cache
        self.chapter_delay = chapter_delay
        self.step_delay = step_delay
        self.questions_per_chapter = questions_per_chapter
        self.summary_prefix_chars = summary_prefix_chars
        self.max_workers = max_workers
        self._clock = clock
        self._sleep = sleep
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @classmethod
    def from_context(cls, context, **kwargs) -> "PipelineOrchestrator":
        settings = context.settings
        return cls(
            record_store=context.record_store,
            extractor=context.extractor,
            embedding_client=context.embedding_client,
            vector_store=context.vector_store,
            assistant=context.assistant,
            splitter=context.splitter,
            cache=context.cache,
            chapter_delay=settings.chapter_delay,
            step_delay=settings.step_delay,
            questions_per_chapter=settings.questions_per_chapter,
            summary_prefix_chars=settings.summary_prefix_chars,
            max_workers=settings.pipeline_max_workers,
            **kwargs,
        )

    # =========================================================================
    # Registration
    # =========================================================================

    def register_document(
        self,
        file_path: str,
        mime_type: Optional[str] = None,
        title: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> Document:
        """
        Create a PENDING document for an uploaded file.

        Args:
            file_path: Path of the stored upload
            mime_type: Declared MIME type, guessed from the extension when None
            title: Display title, defaults to the file name without extension
            document_id: Explicit id, a random one otherwise

        Returns:
            The new Document
        """
        if not os.path.exists(file_path):
            raise FileNotFoundError(file_path)

        document = Document(
            document_id=document_id or Document.new_id(),
            title=title or os.path.splitext(os.path.basename(file_path))[0],
            file_path=file_path,
            mime_type=mime_type or "",
            file_size=os.path.getsize(file_path),
        )
        self.record_store.create_document(document)
        logger.info("document_registered", document_id=document.document_id, title=document.title)
        return document

    # =========================================================================
    # Processing
    # =========================================================================

    def process_document(self, document_id: str, force: bool = False) -> ProcessingReport:
        """
        Run the full pipeline for one document.

        Safe to call again on a READY or ERROR document: chapters and
        concepts are cleared first, chunk ids are regenerated from the
        same sequence so vectors are overwritten.

        Args:
            document_id: Document to process
            force: Take over a document left in PROCESSING by a dead run

        Returns:
            ProcessingReport with the terminal status

        Raises:
            DocumentNotFound: Unknown document
            DocumentNotReady: Another run is processing the document
        """
        document = self.record_store.claim_for_processing(document_id, force=force)
        log = logger.bind(document_id=document_id)
        report = ProcessingReport(document_id=document_id, status=DocumentStatus.PROCESSING)
        pacer = CallPacer(clock=self._clock, sleep=self._sleep)

        log.info("document_processing_started", file_path=document.file_path)

        # Stage 1: extraction is the only stage allowed to fail the document
        try:
            extracted = self.extractor.extract(document.file_path, document.mime_type or None)
            if not extracted.text.strip():
                raise ExtractionFailed(f"No text could be extracted from {document.file_path}")
        except Exception as e:
            log.error("extraction_failed", error=str(e), exc_info=True)
            self.record_store.update_document(
                document_id, status=DocumentStatus.ERROR, error_message=str(e), updated_at=utcnow()
            )
            report.status = DocumentStatus.ERROR
            report.error = str(e)
            return report

        text = extracted.text
        page_count = max(1, extracted.page_count)
        self.record_store.update_document(
            document_id,
            page_count=page_count,
            author=extracted.metadata.get("author") or document.author,
        )

        try:
            spans = detect_chapters(text)
            report.chapters = len(spans)
            log.info("chapters_detected", chapters=len(spans), page_count=page_count)

            self.record_store.delete_chapters(document_id)
            self.record_store.delete_concepts(document_id)
            self._enrich_chapters(document_id, text, spans, page_count, pacer, report)

            self._index_document(document_id, text, spans, page_count, report)

            whole_summary = self._ask(
                pacer, self.chapter_delay, report, "whole_summary", None,
                "summarize", text[:self.summary_prefix_chars], SummaryLevel.DETAILED,
            )
        except Exception as e:
            # Only reachable when the record store itself fails
            log.error("document_processing_aborted", error=str(e), exc_info=True)
            self.record_store.update_document(
                document_id, status=DocumentStatus.ERROR, error_message=str(e), updated_at=utcnow()
            )
            raise

        self.record_store.update_document(
            document_id,
            status=DocumentStatus.READY,
            whole_summary=whole_summary,
            updated_at=utcnow(),
        )
        report.status = DocumentStatus.READY
        log.info(
            "document_processing_complete",
            chapters=report.chapters,
            chunks=report.chunks,
            vectors=report.vectors_indexed,
            degraded=report.degraded_stages,
            waited=round(pacer.total_waited, 2),
        )
        return report

    def reprocess_document(self, document_id: str, force: bool = False) -> ProcessingReport:
        """Re-run the pipeline from extraction on an existing document."""
        logger.info("document_reprocessing", document_id=document_id, force=force)
        return self.process_document(document_id, force=force)

    def _ask(
        self,
        pacer: CallPacer,
        interval: float,
        report: ProcessingReport,
        stage: str,
        fallback: Any,
        method: str,
        *args: Any,
        **log_context: Any,
    ) -> Any:
        """One paced assistant call; any failure yields ``fallback``."""
        if self.assistant is None:
            report.mark_degraded(stage)
            return fallback
        try:
            return pacer.run(interval, getattr(self.assistant, method), *args)
        except Exception as e:
            logger.warning(
                "enrichment_step_failed",
                document_id=report.document_id,
                stage=stage,
                error=str(e),
                **log_context,
            )
            report.mark_degraded(stage)
            return fallback

    def _enrich_chapters(
        self,
        document_id: str,
        text: str,
        spans: Sequence[ChapterSpan],
        page_count: int,
        pacer: CallPacer,
        report: ProcessingReport,
    ) -> None:
        if self.assistant is None:
            logger.warning("assistant_unconfigured", document_id=document_id)

        for position, span in enumerate(spans):
            chapter_text = text[span.start_index:span.end_index]
            ctx = {"chapter_number": span.number}
            first_gap = self.chapter_delay if position > 0 else self.step_delay

            summaries = {}
            for i, level in enumerate(SummaryLevel):
                summaries[level] = self._ask(
                    pacer, first_gap if i == 0 else self.step_delay, report,
                    "summary_" + level.value, SUMMARY_FALLBACK,
                    "summarize", chapter_text, level, **ctx,
                )

            questions = self._ask(
                pacer, self.step_delay, report, "practice_questions", [],
                "generate_questions", chapter_text, self.questions_per_chapter, **ctx,
            )

            self.record_store.upsert_chapter(Chapter(
                document_id=document_id,
                number=span.number,
                title=span.title,
                page_start=estimate_page(span.start_index, len(text), page_count),
                page_end=estimate_page(max(span.start_index, span.end_index - 1), len(text), page_count),
                summary_brief=summaries[SummaryLevel.BRIEF],
                summary_standard=summaries[SummaryLevel.STANDARD],
                summary_detailed=summaries[SummaryLevel.DETAILED],
                practice_questions=list(questions),
            ))

            drafts = self._ask(
                pacer, self.step_delay, report, "concepts", [],
                "extract_concepts", chapter_text, **ctx,
            )
            self.record_store.add_concepts(document_id, [
                Concept(
                    document_id=document_id,
                    term=draft.term,
                    definition=draft.definition,
                    category=ConceptCategory.normalize(draft.category),
                    chapter_number=span.number,
                )
                for draft in drafts
            ])
            logger.info(
                "chapter_processed",
                document_id=document_id,
                chapter_number=span.number,
                questions=len(questions),
                concepts=len(drafts),
            )

    # =========================================================================
    # Chunking and indexing
    # =========================================================================

    def build_chunks(
        self,
        document_id: str,
        text: str,
        spans: Sequence[ChapterSpan],
        page_count: int,
    ) -> List[Chunk]:
        """
        Split text into lookup-table rows with stable ids.

        The page and chapter of a chunk are those of its first word not
        shared with the previous chunk.
        """
        chunks = []
        for piece in self.splitter.split(text):
            chunks.append(Chunk(
                chunk_id=chunk_id_for(document_id, piece.index),
                document_id=document_id,
                sequence_index=piece.index,
                text=piece.text,
                page_number=estimate_page(piece.new_char_start, len(text), page_count),
                chapter_number=chapter_at(list(spans), piece.new_char_start),
                token_count=self.embedding_client.count_tokens(piece.text),
                char_start=piece.char_start,
            ))
        return chunks

    def _embed_and_upsert(self, chunks: Sequence[Chunk]) -> Tuple[int, int]:
        """Returns (vectors written, chunks that failed to embed)."""
        batch = self.embedding_client.embed_batch([chunk.text for chunk in chunks])
        records = [VectorRecord.for_chunk(chunks[i], vector) for i, vector in batch.successful()]
        written = self.vector_store.upsert(records) if records else 0
        return written, len(batch.failures)

    def _index_document(
        self,
        document_id: str,
        text: str,
        spans: Sequence[ChapterSpan],
        page_count: int,
        report: ProcessingReport,
    ) -> None:
        try:
            chunks = self.build_chunks(document_id, text, spans, page_count)
            fresh_ids = {chunk.chunk_id for chunk in chunks}
            stale_ids = [
                chunk.chunk_id for chunk in self.record_store.list_chunks(document_id)
                if chunk.chunk_id not in fresh_ids
            ]

            self.record_store.replace_chunks(document_id, chunks)
            if stale_ids:
                self.vector_store.delete_ids(stale_ids)
            report.chunks = len(chunks)

            report.vectors_indexed, report.embedding_failures = self._embed_and_upsert(chunks)
            if report.embedding_failures:
                report.mark_degraded("embedding")
            logger.info(
                "document_indexed",
                document_id=document_id,
                chunks=report.chunks,
                vectors=report.vectors_indexed,
                failures=report.embedding_failures,
            )
        except Exception as e:
            report.vectors_indexed = getattr(e, "committed", report.vectors_indexed)
            logger.warning("indexing_failed", document_id=document_id, error=str(e), exc_info=True)
            report.mark_degraded("indexing")
        finally:
            if self.cache is not None:
                self.cache.invalidate(document_id)

    def rebuild_vectors(self, document_id: str) -> int:
        """
        Re-embed a document's chunk lookup table and re-upsert it.

        Args:
            document_id: Document whose vectors are rebuilt

        Returns:
            Number of vectors written

        Raises:
            DocumentNotFound: Unknown document
        """
        self.record_store.get_document(document_id)
        chunks = self.record_store.list_chunks(document_id)
        if not chunks:
            return 0

        written, failures = self._embed_and_upsert(chunks)
        if self.cache is not None:
            self.cache.invalidate(document_id)
        logger.info("vectors_rebuilt", document_id=document_id, vectors=written, failures=failures)
        return written

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_document(self, document_id: str) -> None:
        """
        Remove a document with its vectors, chunks, chapters, concepts and
        cached searches.

        The vector side is a no-op for unknown documents.

        Raises:
            DocumentNotFound: No such document record
        """
        chunk_ids = [chunk.chunk_id for chunk in self.record_store.list_chunks(document_id)]
        if chunk_ids:
            self.vector_store.delete_ids(chunk_ids)
        try:
            self.vector_store.delete_by_filter({"document_id": document_id})
        except Exception as e:
            # Serverless indexes reject filtered deletes; the ids above cover it
            logger.warning("vector_delete_by_filter_failed", document_id=document_id, error=str(e))
        self.record_store.delete_chunks(document_id)
        if self.cache is not None:
            self.cache.invalidate(document_id)

        self.record_store.get_document(document_id)
        self.record_store.delete_chapters(document_id)
        self.record_store.delete_concepts(document_id)
        self.record_store.delete_document(document_id)
        logger.info("document_deleted", document_id=document_id, vectors=len(chunk_ids))

    # =========================================================================
    # Concurrent processing
    # =========================================================================

    def _process_safely(self, document_id: str) -> ProcessingReport:
        try:
            return self.process_document(document_id)
        except DocumentNotReady as e:
            logger.warning("document_already_processing", document_id=document_id)
            return ProcessingReport(document_id=document_id, status=DocumentStatus.PROCESSING, error=str(e))
        except Exception as e:
            return ProcessingReport(document_id=document_id, status=DocumentStatus.ERROR, error=str(e))

    def process_documents(self, document_ids: Iterable[str]) -> List[ProcessingReport]:
        """
        Process several documents concurrently, one worker per document.

        Args:
            document_ids: Documents to process

        Returns:
            Reports in the order of ``document_ids``
        """
        document_ids = list(document_ids)
        reports = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_id = {
                executor.submit(self._process_safely, document_id): document_id
                for document_id in document_ids
            }

            with tqdm(total=len(document_ids), desc="Processing documents", unit="doc") as pbar:
                for future in as_completed(future_to_id):
                    report = future.result()
                    reports[future_to_id[future]] = report

                    mark = "✓" if report.status == DocumentStatus.READY else "✗"
                    pbar.set_postfix_str(f"{mark} {report.document_id}")
                    pbar.update(1)

        return [reports[document_id] for document_id in document_ids]

    def submit(self, document_id: str) -> "Future[ProcessingReport]":
        """Schedule one document in the background."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pipeline")
            return self._executor.submit(self._process_safely, document_id)

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
