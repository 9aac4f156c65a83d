"""
Study Ingest - Study Material Ingestion & Retrieval Pipeline

Turns long-form documents into study material (chapters, summaries, key
concepts, practice questions), indexes their text for semantic search, and
answers questions against a single document with retrieved context.
"""

from .assistant import BedrockStudyAssistant, StudyAssistant
from .chapters import detect_chapters
from .config import Settings
from .context import PipelineContext, open_context
from .embedding import EmbeddingClient, cosine_similarity
from .extraction import CompositeExtractor, PlainTextExtractor, UnstructuredExtractor
from .models import AnswerResult, Chapter, Chunk, Concept, Document, DocumentStatus, ProcessingReport
from .pipeline import PipelineOrchestrator
from .retrieval import RetrievalService
from .retry import RetryPolicy
from .search_cache import SearchCache
from .store import InMemoryRecordStore, JsonRecordStore
from .text_splitter import TextSplitter
from .vector_store import DisabledVectorStore, InMemoryVectorStore, PineconeVectorStore

__all__ = [
    "PipelineOrchestrator",
    "RetrievalService",
    "PipelineContext",
    "open_context",
    "Settings",
    "TextSplitter",
    "EmbeddingClient",
    "cosine_similarity",
    "PineconeVectorStore",
    "InMemoryVectorStore",
    "DisabledVectorStore",
    "SearchCache",
    "RetryPolicy",
    "BedrockStudyAssistant",
    "StudyAssistant",
    "PlainTextExtractor",
    "UnstructuredExtractor",
    "CompositeExtractor",
    "InMemoryRecordStore",
    "JsonRecordStore",
    "detect_chapters",
    "Document",
    "DocumentStatus",
    "Chapter",
    "Concept",
    "Chunk",
    "AnswerResult",
    "ProcessingReport",
]
