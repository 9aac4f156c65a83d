"""
Process-wide wiring.

``open_context`` builds every collaborator once from Settings and releases
them (thread pools, index handles, record files) on exit:

    with open_context(Settings.from_env()) as ctx:
        orchestrator = PipelineOrchestrator.from_context(ctx)
        orchestrator.process_document(document_id)
"""
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .assistant import BedrockStudyAssistant, StudyAssistant
from .config import Settings
from .embedding import EmbeddingClient
from .errors import ConfigurationError
from .extraction import Extractor, create_extractor
from .log import get_logger
from .retry import RetryPolicy
from .search_cache import SearchCache
from .store import RecordStore, create_record_store
from .text_splitter import TextSplitter
from .vector_store import VectorStore, create_vector_store

logger = get_logger(__name__)


@dataclass
class PipelineContext:
    """Everything the pipeline and retrieval services share."""
    settings: Settings
    retry_policy: RetryPolicy
    splitter: TextSplitter
    embedding_client: EmbeddingClient
    vector_store: VectorStore
    record_store: RecordStore
    cache: SearchCache
    extractor: Extractor
    assistant: Optional[StudyAssistant] = None

    def close(self) -> None:
        for resource in (self.embedding_client, self.vector_store, self.record_store):
            try:
                resource.close()
            except Exception as e:
                logger.warning("context_close_failed", resource=type(resource).__name__, error=str(e))


def build_assistant(settings: Settings, retry_policy: RetryPolicy) -> Optional[StudyAssistant]:
    try:
        return BedrockStudyAssistant(
            claude_model=settings.claude_model,
            aws_region=settings.aws_region,
            retry_policy=retry_policy,
        )
    except ConfigurationError as e:
        logger.warning("assistant_unconfigured", reason=str(e))
        return None


@contextmanager
def open_context(settings: Optional[Settings] = None) -> Iterator[PipelineContext]:
    """
    Build the pipeline context and tear it down on exit.

    Args:
        settings: Settings to use, read from the environment when None

    Yields:
        PipelineContext
    """
    settings = settings or Settings.from_env()
    retry_policy = RetryPolicy.from_settings(settings)

    embedding_client = EmbeddingClient.from_settings(settings, retry_policy=retry_policy)
    context = PipelineContext(
        settings=settings,
        retry_policy=retry_policy,
        splitter=TextSplitter(chunk_size=settings.chunk_size, overlap=settings.chunk_overlap),
        embedding_client=embedding_client,
        vector_store=create_vector_store(settings, retry_policy=retry_policy),
        record_store=create_record_store(settings),
        cache=SearchCache.from_settings(settings),
        extractor=create_extractor(settings, retry_policy=retry_policy),
        assistant=build_assistant(settings, retry_policy),
    )
    logger.info(
        "context_opened",
        vector_store=type(context.vector_store).__name__,
        record_store=type(context.record_store).__name__,
        assistant=context.assistant is not None,
    )
    try:
        yield context
    finally:
        context.close()
        logger.info("context_closed")
