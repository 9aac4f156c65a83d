"""
Vector store adapters with exact-match metadata filtering.

``PineconeVectorStore`` talks to a serverless Pinecone index,
``InMemoryVectorStore`` keeps vectors in process (local runs and tests) and
``DisabledVectorStore`` stands in when no index is configured: every call
is a logged no-op and queries return no matches.
"""
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from pinecone import Pinecone, ServerlessSpec

from .log import get_logger
from .models import VectorMatch, VectorRecord
from .retry import RetryPolicy

logger = get_logger(__name__)

MetadataFilter = Dict[str, Any]


def to_pinecone_filter(filters: Optional[MetadataFilter]) -> Optional[Dict[str, Any]]:
    """
    Translate an exact-match filter into Pinecone's filter language.

    Example:
        {"document_id": "abc"} -> {"document_id": {"$eq": "abc"}}
    """
    if not filters:
        return None
    return {key: {"$eq": value} for key, value in filters.items()}


def _matches(metadata: Dict[str, Any], filters: Optional[MetadataFilter]) -> bool:
    if not filters:
        return True
    return all(metadata.get(key) == value for key, value in filters.items())


class VectorStore(ABC):
    """
    Upsert / query / delete over embedding vectors.

    ``upsert`` is idempotent per id and commits in ordered sub-batches of
    ``batch_size``; a failing sub-batch raises without undoing the ones
    already committed.
    """

    configured = True

    def __init__(self, batch_size: int = 100, retry_policy: Optional[RetryPolicy] = None):
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()

    def upsert(self, records: Sequence[VectorRecord]) -> int:
        """
        Insert or overwrite records.

        Args:
            records: Vector records, written in order

        Returns:
            Number of records committed

        Raises:
            Exception: The failing batch's error, with a `committed` attribute
                holding the number of records written before it
        """
        committed = 0
        for i in range(0, len(records), self.batch_size):
            batch = list(records[i:i + self.batch_size])
            try:
                self.retry_policy.call(self._upsert_batch, batch, operation="vector_upsert")
            except Exception as e:
                logger.warning(
                    "vector_upsert_batch_failed",
                    committed=committed,
                    failed_batch_start=i,
                    error=str(e),
                )
                e.committed = committed
                raise
            committed += len(batch)
        return committed

    def query(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        filters: Optional[MetadataFilter] = None,
    ) -> List[VectorMatch]:
        """
        Nearest records by descending similarity, restricted to ``filters``.

        Args:
            vector: Query embedding
            top_k: Maximum number of matches
            filters: Exact-match metadata filter

        Returns:
            Up to ``top_k`` matches; empty when nothing matches the filter
        """
        if top_k <= 0:
            return []
        matches = self.retry_policy.call(self._query, list(vector), top_k, filters, operation="vector_query")
        return sorted(matches, key=lambda m: m.score, reverse=True)[:top_k]

    def delete_by_filter(self, filters: MetadataFilter) -> None:
        """Remove every record matching ``filters``; unknown documents are a no-op."""
        self.retry_policy.call(self._delete_by_filter, filters, operation="vector_delete")

    def delete_ids(self, ids: Sequence[str]) -> None:
        ids = list(ids)
        for i in range(0, len(ids), self.batch_size):
            self.retry_policy.call(self._delete_ids, ids[i:i + self.batch_size], operation="vector_delete")

    @abstractmethod
    def _upsert_batch(self, batch: List[VectorRecord]) -> None:
        ...

    @abstractmethod
    def _query(self, vector: List[float], top_k: int, filters: Optional[MetadataFilter]) -> List[VectorMatch]:
        ...

    @abstractmethod
    def _delete_by_filter(self, filters: MetadataFilter) -> None:
        ...

    @abstractmethod
    def _delete_ids(self, ids: List[str]) -> None:
        ...

    @abstractmethod
    def stats(self) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        pass


# =========================================================================
# Pinecone
# =========================================================================

class PineconeVectorStore(VectorStore):
    """
    Serverless Pinecone index holding only vectors and minimal metadata.
    """

    provider_name = "pinecone"

    def __init__(
        self,
        api_key: str,
        index_name: str = "document-knowledge-base",
        dimensions: int = 1024,
        metric: str = "cosine",
        cloud: str = "aws",
        region: str = "us-east-1",
        batch_size: int = 100,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Args:
            api_key: Pinecone API key
            index_name: Name of Pinecone index
            dimensions: Embedding dimensions of the index
            metric: Distance metric (cosine, euclidean, or dotproduct)
            cloud: Serverless cloud for a newly created index
            region: Serverless region for a newly created index
            batch_size: Vectors per upsert request
            retry_policy: Backoff applied to each request
        """
        super().__init__(batch_size=batch_size, retry_policy=retry_policy)
        self.pc = Pinecone(api_key=api_key)
        self.index_name = index_name
        self.dimensions = dimensions
        self._setup_index(metric, cloud, region)

    def _setup_index(self, metric: str, cloud: str, region: str):
        """Create Pinecone index if it doesn't exist"""
        existing_indexes = [index.name for index in self.pc.list_indexes()]

        if self.index_name not in existing_indexes:
            logger.info("pinecone_index_create", index=self.index_name, dimensions=self.dimensions)
            self.pc.create_index(
                name=self.index_name,
                dimension=self.dimensions,
                metric=metric,
                spec=ServerlessSpec(cloud=cloud, region=region)
            )
        else:
            logger.info("pinecone_index_existing", index=self.index_name)

        self.index = self.pc.Index(self.index_name)

    def _upsert_batch(self, batch: List[VectorRecord]) -> None:
        self.index.upsert(vectors=[record.to_dict() for record in batch])

    def _query(self, vector: List[float], top_k: int, filters: Optional[MetadataFilter]) -> List[VectorMatch]:
        results = self.index.query(
            vector=vector,
            filter=to_pinecone_filter(filters),
            top_k=top_k,
            include_metadata=True
        )
        return [
            VectorMatch(id=match.id, score=float(match.score or 0.0), metadata=dict(match.metadata or {}))
            for match in results.matches
        ]

    def _delete_by_filter(self, filters: MetadataFilter) -> None:
        self.index.delete(filter=to_pinecone_filter(filters))

    def _delete_ids(self, ids: List[str]) -> None:
        if ids:
            self.index.delete(ids=ids)

    def stats(self) -> Dict[str, Any]:
        stats = self.index.describe_index_stats()
        return {
            "provider": self.provider_name,
            "total_vectors": stats.total_vector_count,
            "dimensions": stats.dimension,
        }


# =========================================================================
# In-process index
# =========================================================================

class InMemoryVectorStore(VectorStore):
    """Brute-force cosine search over vectors held in a dict."""

    provider_name = "memory"

    def __init__(self, dimensions: Optional[int] = None, batch_size: int = 100, retry_policy: Optional[RetryPolicy] = None):
        super().__init__(batch_size=batch_size, retry_policy=retry_policy)
        self.dimensions = dimensions
        self._vectors: Dict[str, np.ndarray] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _upsert_batch(self, batch: List[VectorRecord]) -> None:
        with self._lock:
            for record in batch:
                if self.dimensions is not None and len(record.values) != self.dimensions:
                    raise ValueError(
                        f"Vector {record.id} has {len(record.values)} dimensions, expected {self.dimensions}"
                    )
                self._vectors[record.id] = np.asarray(record.values, dtype=float)
                self._metadata[record.id] = dict(record.metadata)

    def _query(self, vector: List[float], top_k: int, filters: Optional[MetadataFilter]) -> List[VectorMatch]:
        query = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        with self._lock:
            candidates = [
                (record_id, values, self._metadata[record_id])
                for record_id, values in self._vectors.items()
                if _matches(self._metadata[record_id], filters)
            ]
        matches = []
        for record_id, values, metadata in candidates:
            norm = np.linalg.norm(values)
            score = 0.0 if norm == 0 or query_norm == 0 else float(np.dot(query, values) / (norm * query_norm))
            matches.append(VectorMatch(id=record_id, score=score, metadata=dict(metadata)))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def _delete_by_filter(self, filters: MetadataFilter) -> None:
        with self._lock:
            doomed = [rid for rid, meta in self._metadata.items() if _matches(meta, filters)]
            for record_id in doomed:
                self._vectors.pop(record_id, None)
                self._metadata.pop(record_id, None)

    def _delete_ids(self, ids: List[str]) -> None:
        with self._lock:
            for record_id in ids:
                self._vectors.pop(record_id, None)
                self._metadata.pop(record_id, None)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "provider": self.provider_name,
                "total_vectors": len(self._vectors),
                "dimensions": self.dimensions,
            }


# =========================================================================
# Unconfigured
# =========================================================================

class DisabledVectorStore(VectorStore):
    """
    Placeholder used when no vector index is configured.

    upsert commits nothing and returns 0, query returns [], deletes do
    nothing. None of them raise.
    """

    provider_name = "disabled"
    configured = False

    def __init__(self, reason: str = "vector index not configured"):
        super().__init__(batch_size=1, retry_policy=None)
        self.reason = reason

    def upsert(self, records: Sequence[VectorRecord]) -> int:
        logger.warning("vector_store_unconfigured", operation="upsert", records=len(records), reason=self.reason)
        return 0

    def query(self, vector: Sequence[float], top_k: int = 5, filters: Optional[MetadataFilter] = None) -> List[VectorMatch]:
        logger.warning("vector_store_unconfigured", operation="query", reason=self.reason)
        return []

    def delete_by_filter(self, filters: MetadataFilter) -> None:
        logger.warning("vector_store_unconfigured", operation="delete", reason=self.reason)

    def delete_ids(self, ids: Sequence[str]) -> None:
        logger.warning("vector_store_unconfigured", operation="delete", reason=self.reason)

    def _upsert_batch(self, batch: List[VectorRecord]) -> None:
        return None

    def _query(self, vector: List[float], top_k: int, filters: Optional[MetadataFilter]) -> List[VectorMatch]:
        return []

    def _delete_by_filter(self, filters: MetadataFilter) -> None:
        return None

    def _delete_ids(self, ids: List[str]) -> None:
        return None

    def stats(self) -> Dict[str, Any]:
        return {"provider": self.provider_name, "total_vectors": 0, "dimensions": None}


def create_vector_store(settings, retry_policy: Optional[RetryPolicy] = None) -> VectorStore:
    """
    Pick the vector store for the current settings.

    Returns a PineconeVectorStore when PINECONE_API_KEY is set, otherwise a
    DisabledVectorStore. A Pinecone setup failure also degrades to the
    disabled store rather than stopping the process.
    """
    if not settings.vector_index_configured:
        logger.warning("vector_store_unconfigured", reason="PINECONE_API_KEY not set")
        return DisabledVectorStore("PINECONE_API_KEY not set")

    try:
        return PineconeVectorStore(
            api_key=settings.pinecone_api_key,
            index_name=settings.pinecone_index_name,
            dimensions=settings.embedding_dimensions,
            cloud=settings.pinecone_cloud,
            region=settings.pinecone_region,
            batch_size=settings.upsert_batch_size,
            retry_policy=retry_policy,
        )
    except Exception as e:
        logger.warning("vector_store_setup_failed", error=str(e), exc_info=True)
        return DisabledVectorStore(f"Pinecone setup failed: {e}")
