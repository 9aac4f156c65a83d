"""
Embedding client for chunk and query text.
Generates fixed-dimension vectors with Amazon Titan Embed Text v2 on Bedrock.
"""
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

import boto3
import numpy as np
import tiktoken
from botocore.exceptions import ClientError

from .errors import (
    InputTooLarge,
    ProviderError,
    ProviderUnavailable,
    StudyIngestError,
    ValidationError,
    is_input_too_large,
    is_retryable,
)
from .log import get_logger
from .retry import RetryPolicy

logger = get_logger(__name__)


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Cosine similarity score (-1 to 1), 0.0 if either vector is zero
    """
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(vec1, vec2) / (norm1 * norm2))


@dataclass
class EmbeddingBatch:
    """
    Result of a batch call, aligned with the input order.

    ``vectors[i]`` is None exactly when ``i`` is in ``failures``.
    """
    vectors: List[Optional[List[float]]]
    failures: Dict[int, StudyIngestError] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.vectors) - len(self.failures)

    def successful(self) -> List[Tuple[int, List[float]]]:
        return [(i, v) for i, v in enumerate(self.vectors) if v is not None]


class EmbeddingClient:
    """
    Bedrock embedding client with caching and per-item failure isolation.

    Every vector it returns has exactly ``dimensions`` entries. Inputs over
    ``max_input_tokens`` are rejected locally with InputTooLarge; throttling
    and 5xx responses are retried, then surface as ProviderUnavailable.
    """

    provider_name = "bedrock"

    def __init__(
        self,
        aws_region: str = "us-east-1",
        model_id: str = "amazon.titan-embed-text-v2:0",
        dimensions: int = 1024,
        normalize: bool = True,
        cache_size: int = 1000,
        batch_size: int = 16,
        max_workers: int = 4,
        max_input_tokens: int = 8192,
        retry_policy: Optional[RetryPolicy] = None,
        bedrock_client=None,
    ):
        """
        Initialize the embedding client.

        Args:
            aws_region: AWS region for Bedrock
            model_id: Amazon Titan embedding model ID
            dimensions: Embedding dimensions (256, 512, or 1024)
            normalize: Whether to normalize embeddings
            cache_size: Maximum number of embeddings to cache
            batch_size: Texts embedded per group in embed_batch
            max_workers: Concurrent requests within one group
            max_input_tokens: Largest input accepted, counted with tiktoken
            retry_policy: Backoff applied to every provider call
            bedrock_client: Pre-built bedrock-runtime client
        """
        self.bedrock_client = bedrock_client or boto3.client(
            service_name="bedrock-runtime",
            region_name=aws_region
        )
        self.model_id = model_id
        self.dimensions = dimensions
        self.normalize = normalize
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.max_input_tokens = max_input_tokens
        self.retry_policy = retry_policy or RetryPolicy()
        self.tokenizer = tiktoken.get_encoding("cl100k_base")

        self._get_embedding_cached = lru_cache(maxsize=cache_size)(
            self._get_embedding_uncached
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="embed")

    @classmethod
    def from_settings(cls, settings, retry_policy: Optional[RetryPolicy] = None, **kwargs) -> "EmbeddingClient":
        return cls(
            aws_region=settings.aws_region,
            model_id=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            normalize=settings.normalize_embeddings,
            batch_size=settings.embedding_batch_size,
            max_workers=settings.embedding_max_workers,
            max_input_tokens=settings.embedding_max_input_tokens,
            retry_policy=retry_policy,
            **kwargs,
        )

    def count_tokens(self, text: str) -> int:
        return len(self.tokenizer.encode(text, disallowed_special=()))

    def _invoke(self, text: str) -> List[float]:
        request_body = {
            "inputText": text,
            "dimensions": self.dimensions,
            "normalize": self.normalize
        }
        response = self.bedrock_client.invoke_model(
            modelId=self.model_id,
            body=json.dumps(request_body),
            contentType="application/json",
            accept="application/json"
        )
        response_body = json.loads(response["body"].read())
        return response_body.get("embedding", [])

    def _get_embedding_uncached(self, text: str) -> Tuple[float, ...]:
        """Call Bedrock under the retry policy and translate provider failures."""
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text", provider_name=self.provider_name)
        tokens = self.count_tokens(text)
        if tokens > self.max_input_tokens:
            raise InputTooLarge(
                f"Input has {tokens} tokens, limit is {self.max_input_tokens}",
                provider_name=self.provider_name,
            )

        try:
            embedding = self.retry_policy.call(self._invoke, text, operation="embed")
        except ClientError as e:
            if is_input_too_large(e):
                raise InputTooLarge(str(e), provider_name=self.provider_name)
            if is_retryable(e):
                raise ProviderUnavailable(str(e), provider_name=self.provider_name)
            raise ProviderError(str(e), provider_name=self.provider_name)
        except StudyIngestError:
            raise
        except Exception as e:
            if is_retryable(e):
                raise ProviderUnavailable(str(e), provider_name=self.provider_name)
            raise

        if len(embedding) != self.dimensions:
            raise ProviderError(
                f"Expected {self.dimensions} dimensions, got {len(embedding)}",
                provider_name=self.provider_name,
            )
        return tuple(float(v) for v in embedding)

    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for one text.

        Args:
            text: Text to embed

        Returns:
            List of ``dimensions`` floats

        Raises:
            ValidationError: Text is empty
            InputTooLarge: Text is over the token limit
            ProviderUnavailable: Bedrock stayed unavailable after retries
        """
        return list(self._get_embedding_cached(text))

    def get_embedding(self, text: str) -> np.ndarray:
        """Embedding as a numpy array."""
        return np.array(self._get_embedding_cached(text))

    def _embed_isolated(self, text: str):
        try:
            return self.embed(text), None
        except StudyIngestError as e:
            return None, e
        except Exception as e:
            return None, ProviderError(f"{type(e).__name__}: {e}", provider_name=self.provider_name)

    def embed_batch(self, texts: Sequence[str]) -> EmbeddingBatch:
        """
        Embed many texts, isolating failures per item.

        Texts are sent in groups of ``batch_size``, up to ``max_workers`` in
        flight at once. A failing item is recorded in ``failures`` and the
        rest of the batch carries on.

        Args:
            texts: Texts to embed

        Returns:
            EmbeddingBatch aligned with ``texts``
        """
        vectors: List[Optional[List[float]]] = [None] * len(texts)
        failures: Dict[int, StudyIngestError] = {}

        for offset in range(0, len(texts), self.batch_size):
            group = list(texts[offset:offset + self.batch_size])
            for i, (vector, error) in enumerate(self._executor.map(self._embed_isolated, group)):
                index = offset + i
                if error is not None:
                    failures[index] = error
                    logger.warning("embedding_item_failed", index=index, error=str(error))
                else:
                    vectors[index] = vector

        if failures:
            logger.info("embedding_batch_partial", total=len(texts), failed=len(failures))
        return EmbeddingBatch(vectors=vectors, failures=failures)

    def clear_cache(self):
        """Clear the embedding cache."""
        self._get_embedding_cached.cache_clear()

    def cache_info(self):
        """Get cache statistics."""
        return self._get_embedding_cached.cache_info()

    def close(self):
        self._executor.shutdown(wait=True)
