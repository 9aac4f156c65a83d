"""
Search results cache keyed by (document, normalised query prefix).

Eviction is FIFO under capacity: when full, the oldest *inserted* entry
goes, regardless of how recently it was read. Entries older than the TTL
count as misses and are dropped by the ``get`` that finds them.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from cachetools import FIFOCache

from .log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry(Generic[T]):
    results: List[T]
    created_at: float
    depth: Optional[int] = None


class SearchCache(Generic[T]):
    """
    Bounded, time-expiring memo of ranked retrieval results.

    Callers check :meth:`get`, retrieve on a miss, then :meth:`set`; the
    cache never performs retrieval itself. All mutations hold one lock and
    no I/O happens under it.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 300.0,
        key_prefix_length: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_size: Entries kept before the oldest inserted one is evicted
            ttl_seconds: Age after which an entry is treated as absent
            key_prefix_length: Query characters that take part in the key
            clock: Monotonic time source (injected in tests)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.key_prefix_length = key_prefix_length
        self._clock = clock
        self._entries: FIFOCache = FIFOCache(maxsize=max_size)
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "SearchCache":
        return cls(
            max_size=settings.cache_max_size,
            ttl_seconds=settings.cache_ttl_seconds,
            key_prefix_length=settings.cache_key_prefix,
            **kwargs,
        )

    def make_key(self, query: str, document_id: str) -> CacheKey:
        """Truncate the query, then fold case and whitespace.

        Long queries sharing a prefix deliberately share a key.
        """
        prefix = query[:self.key_prefix_length]
        return document_id, " ".join(prefix.split()).lower()

    def get(self, query: str, document_id: str, depth: Optional[int] = None) -> Optional[List[T]]:
        """
        Cached results, or None on a miss or an expired entry.

        An entry stored with a smaller ``depth`` than requested is a miss:
        it cannot tell whether more results exist.
        """
        key = self.make_key(query, document_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if depth is not None and entry.depth is not None and entry.depth < depth:
                self.misses += 1
                return None
            if self._clock() - entry.created_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                expired = True
            else:
                self.hits += 1
                expired = False
        if expired:
            logger.debug("cache_expired", document_id=document_id)
            return None
        logger.debug("cache_hit", document_id=document_id)
        return list(entry.results)

    def set(self, query: str, document_id: str, results: List[T], depth: Optional[int] = None) -> None:
        """
        Store results; overwriting a key makes it the newest entry.

        ``depth`` is the result limit the search ran with.
        """
        key = self.make_key(query, document_id)
        entry = CacheEntry(results=list(results), created_at=self._clock(), depth=depth)
        with self._lock:
            self._entries.pop(key, None)
            # FIFOCache evicts the oldest inserted key when full
            self._entries[key] = entry
        logger.debug("cache_set", document_id=document_id, results=len(results))

    def invalidate(self, document_id: str) -> int:
        """Drop every entry for a document; returns how many were removed."""
        with self._lock:
            doomed = [key for key in self._entries.keys() if key[0] == document_id]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        """Physical presence, expired entries included."""
        with self._lock:
            return key in self._entries

    def stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
            }
