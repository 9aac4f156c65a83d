"""Tests for the search results cache."""
import threading

import pytest

from study_ingest.search_cache import SearchCache

from conftest import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


class TestSearchCache:
    """Tests for SearchCache."""

    def test_miss_then_hit(self, clock):
        cache = SearchCache(clock=clock)
        assert cache.get("what is osmosis", "doc-a") is None

        cache.set("what is osmosis", "doc-a", ["r1", "r2"])

        assert cache.get("what is osmosis", "doc-a") == ["r1", "r2"]
        assert cache.hits == 1
        assert cache.misses == 1

    def test_keys_are_scoped_by_document(self, clock):
        cache = SearchCache(clock=clock)
        cache.set("question", "doc-a", ["a"])
        assert cache.get("question", "doc-b") is None

    def test_key_normalization(self, clock):
        cache = SearchCache(clock=clock)
        cache.set("  What   IS\tOsmosis ", "doc-a", ["r"])
        assert cache.get("what is osmosis", "doc-a") == ["r"]

    def test_shared_prefix_collides(self, clock):
        cache = SearchCache(key_prefix_length=10, clock=clock)
        cache.set("abcdefghij first ending", "doc-a", ["first"])
        assert cache.get("abcdefghij second ending", "doc-a") == ["first"]

    def test_fifo_eviction_under_capacity(self, clock):
        cache = SearchCache(max_size=3, clock=clock)
        for i in range(4):
            cache.set(f"query {i}", "doc-a", [i])

        assert len(cache) == 3
        assert cache.make_key("query 0", "doc-a") not in cache
        assert cache.get("query 3", "doc-a") == [3]

    def test_eviction_ignores_reads(self, clock):
        cache = SearchCache(max_size=2, clock=clock)
        cache.set("first", "doc-a", [1])
        cache.set("second", "doc-a", [2])
        # A read does not protect the oldest insertion
        assert cache.get("first", "doc-a") == [1]

        cache.set("third", "doc-a", [3])

        assert cache.get("first", "doc-a") is None
        assert cache.get("second", "doc-a") == [2]

    def test_overwrite_refreshes_position(self, clock):
        cache = SearchCache(max_size=2, clock=clock)
        cache.set("first", "doc-a", [1])
        cache.set("second", "doc-a", [2])
        cache.set("first", "doc-a", [10])

        cache.set("third", "doc-a", [3])

        assert cache.get("first", "doc-a") == [10]
        assert cache.get("second", "doc-a") is None

    def test_expired_entry_is_miss_but_present_until_get(self, clock):
        cache = SearchCache(ttl_seconds=300, clock=clock)
        cache.set("question", "doc-a", ["r"])
        key = cache.make_key("question", "doc-a")

        clock.now += 301

        assert key in cache
        assert cache.get("question", "doc-a") is None
        assert key not in cache

    def test_entry_within_ttl_is_hit(self, clock):
        cache = SearchCache(ttl_seconds=300, clock=clock)
        cache.set("question", "doc-a", ["r"])
        clock.now += 299
        assert cache.get("question", "doc-a") == ["r"]

    def test_shallow_entry_misses_deeper_request(self, clock):
        cache = SearchCache(clock=clock)
        cache.set("q", "doc-a", [1, 2], depth=2)

        assert cache.get("q", "doc-a", depth=2) == [1, 2]
        assert cache.get("q", "doc-a", depth=1) == [1, 2]
        assert cache.get("q", "doc-a", depth=5) is None
        assert cache.get("q", "doc-a") == [1, 2]
        assert cache.misses == 1

    def test_returned_list_is_a_copy(self, clock):
        cache = SearchCache(clock=clock)
        cache.set("q", "doc-a", ["r"])
        cache.get("q", "doc-a").append("mutated")
        assert cache.get("q", "doc-a") == ["r"]

    def test_invalidate_document(self, clock):
        cache = SearchCache(clock=clock)
        cache.set("q1", "doc-a", [1])
        cache.set("q2", "doc-a", [2])
        cache.set("q1", "doc-b", [3])

        assert cache.invalidate("doc-a") == 2
        assert len(cache) == 1
        assert cache.get("q1", "doc-b") == [3]

    def test_stats(self, clock):
        cache = SearchCache(max_size=5, ttl_seconds=60, clock=clock)
        cache.set("q", "doc-a", [1])
        stats = cache.stats()
        assert stats["size"] == 1
        assert stats["max_size"] == 5
        assert stats["ttl_seconds"] == 60

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            SearchCache(max_size=0)

    def test_concurrent_writers_respect_capacity(self):
        cache = SearchCache(max_size=50)

        def writer(offset):
            for i in range(200):
                cache.set(f"q{offset}-{i}", "doc-a", [i])
                cache.get(f"q{offset}-{i // 2}", "doc-a")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 50
