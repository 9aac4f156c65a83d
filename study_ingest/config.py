"""
Runtime settings for the ingestion and retrieval pipeline.

Values come from the environment (a local .env file is loaded first), each
with a default, so ``Settings.from_env()`` works on a bare machine with the
vector index and Unstructured disabled.
"""
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import InvalidConfiguration


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfiguration(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfiguration(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    """All tunables of the pipeline."""

    # AWS Bedrock
    aws_region: str = "us-east-1"
    embedding_model: str = "amazon.titan-embed-text-v2:0"
    embedding_dimensions: int = 1024
    normalize_embeddings: bool = True
    claude_model: Optional[str] = None

    # Pinecone
    pinecone_api_key: Optional[str] = None
    pinecone_index_name: str = "document-knowledge-base"
    pinecone_cloud: str = "aws"
    pinecone_region: str = "us-east-1"

    # Unstructured
    unstructured_api_key: Optional[str] = None

    # Chunking (units are words)
    chunk_size: int = 250
    chunk_overlap: int = 75

    # Embedding batches
    embedding_batch_size: int = 16
    embedding_max_workers: int = 4
    embedding_max_input_tokens: int = 8192

    # Vector upserts
    upsert_batch_size: int = 100

    # Search cache
    cache_max_size: int = 100
    cache_ttl_seconds: float = 300.0
    cache_key_prefix: int = 100

    # Retry policy
    max_retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 5.0

    # Pacing between enrichment calls
    chapter_delay: float = 2.0
    step_delay: float = 1.0

    # Enrichment
    questions_per_chapter: int = 5
    summary_prefix_chars: int = 10000
    pipeline_max_workers: int = 3

    # Retrieval
    top_k: int = 5
    max_question_length: int = 1000

    # Storage ("" keeps records in memory)
    store_dir: str = "dataset/store"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            dotenv: Load a .env file first

        Returns:
            Validated Settings
        """
        if dotenv:
            load_dotenv()

        settings = cls(
            aws_region=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
            embedding_model=os.getenv("AWS_BEDROCK_TITAN_EMBEDDING_MODEL", "amazon.titan-embed-text-v2:0"),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", 1024),
            claude_model=os.getenv("AWS_BEDROCK_CLAUDE_MODEL"),
            pinecone_api_key=os.getenv("PINECONE_API_KEY") or None,
            pinecone_index_name=os.getenv("PINECONE_INDEX_NAME", "document-knowledge-base"),
            pinecone_cloud=os.getenv("PINECONE_CLOUD", "aws"),
            pinecone_region=os.getenv("PINECONE_REGION", "us-east-1"),
            unstructured_api_key=os.getenv("UNSTRUCTURED_API_KEY") or None,
            chunk_size=_env_int("CHUNK_SIZE", 250),
            chunk_overlap=_env_int("CHUNK_OVERLAP", 75),
            embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", 16),
            embedding_max_workers=_env_int("EMBEDDING_MAX_WORKERS", 4),
            embedding_max_input_tokens=_env_int("EMBEDDING_MAX_INPUT_TOKENS", 8192),
            upsert_batch_size=_env_int("UPSERT_BATCH_SIZE", 100),
            cache_max_size=_env_int("SEARCH_CACHE_MAX_SIZE", 100),
            cache_ttl_seconds=_env_float("SEARCH_CACHE_TTL_SECONDS", 300.0),
            cache_key_prefix=_env_int("SEARCH_CACHE_KEY_PREFIX", 100),
            max_retries=_env_int("RETRY_MAX_RETRIES", 2),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("RETRY_MAX_DELAY", 5.0),
            chapter_delay=_env_float("CHAPTER_DELAY_SECONDS", 2.0),
            step_delay=_env_float("STEP_DELAY_SECONDS", 1.0),
            questions_per_chapter=_env_int("QUESTIONS_PER_CHAPTER", 5),
            summary_prefix_chars=_env_int("SUMMARY_PREFIX_CHARS", 10000),
            pipeline_max_workers=_env_int("PIPELINE_MAX_WORKERS", 3),
            top_k=_env_int("RETRIEVAL_TOP_K", 5),
            max_question_length=_env_int("MAX_QUESTION_LENGTH", 1000),
            store_dir=os.getenv("STORE_DIR", "dataset/store"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=os.getenv("APP_ENV", "development") == "production",
        )
        settings.validate()
        return settings

    @property
    def vector_index_configured(self) -> bool:
        return bool(self.pinecone_api_key)

    def validate(self) -> None:
        """Raise InvalidConfiguration for values the pipeline cannot run with."""
        if self.chunk_size <= 0 or self.chunk_overlap < 0:
            raise InvalidConfiguration("chunk_size must be positive and chunk_overlap non-negative")
        if self.chunk_overlap >= self.chunk_size:
            raise InvalidConfiguration(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        positive = {
            "embedding_dimensions": self.embedding_dimensions,
            "embedding_batch_size": self.embedding_batch_size,
            "embedding_max_workers": self.embedding_max_workers,
            "upsert_batch_size": self.upsert_batch_size,
            "cache_max_size": self.cache_max_size,
            "cache_key_prefix": self.cache_key_prefix,
            "top_k": self.top_k,
            "pipeline_max_workers": self.pipeline_max_workers,
        }
        for name, value in positive.items():
            if value <= 0:
                raise InvalidConfiguration(f"{name} must be positive, got {value}")
        if self.max_retries < 0:
            raise InvalidConfiguration("max_retries cannot be negative")
        if self.cache_ttl_seconds <= 0:
            raise InvalidConfiguration("cache_ttl_seconds must be positive")

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact:
            for key in ("pinecone_api_key", "unstructured_api_key"):
                if data[key]:
                    data[key] = "***"
        return data
