"""Tests for the bounded LRU cache."""

import threading

import pytest
import yaml

from linkrelay.cache.lru import LRUCache


class TestLRUCacheBasics:
    """Tests for get/put/delete/size/entries."""

    def test_get_missing_returns_none(self):
        """A miss without a compute function returns None."""
        cache = LRUCache[str, str](max_entries=10)
        assert cache.get("missing") is None
        assert cache.stats.misses == 1

    def test_put_then_get(self):
        """Stored values come back."""
        cache = LRUCache[str, str](max_entries=10)
        cache.put("http://bit.ly/a", "http://example.com/a")

        assert cache.get("http://bit.ly/a") == "http://example.com/a"
        assert cache.size() == 1
        assert len(cache) == 1
        assert "http://bit.ly/a" in cache

    def test_get_computes_on_miss(self):
        """A miss calls compute once and stores the result."""
        calls = []

        def compute(key):
            calls.append(key)
            return key.upper()

        cache = LRUCache[str, str](max_entries=10)

        assert cache.get("abc", compute) == "ABC"
        assert cache.get("abc", compute) == "ABC"
        assert calls == ["abc"]

    def test_get_counts_hits(self):
        """Each hit increments the entry's hit count."""
        cache = LRUCache[str, str](max_entries=10)
        cache.put("k", "v")
        cache.get("k")
        cache.get("k")

        assert cache.entry("k").hits == 2
        assert cache.stats.hits == 2

    def test_put_replaces_value(self):
        """Putting an existing key replaces its value without growing the cache."""
        cache = LRUCache[str, str](max_entries=10)
        cache.put("k", "old")
        cache.put("k", "new")

        assert cache.get("k") == "new"
        assert cache.size() == 1

    def test_delete(self):
        """Delete removes the key and reports whether it existed."""
        cache = LRUCache[str, str](max_entries=10)
        cache.put("k", "v")

        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_entries_ordered_oldest_first(self):
        """entries() lists pairs from least to most recently used."""
        cache = LRUCache[str, int](max_entries=10)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        cache.get("a")

        assert cache.entries() == [("b", 2), ("c", 3), ("a", 1)]

    def test_rejects_non_positive_capacity(self):
        """Capacity must be at least one."""
        with pytest.raises(ValueError):
            LRUCache(max_entries=0)


class TestLRUCacheEviction:
    """Tests for size-bounded eviction."""

    def test_inserting_past_capacity_keeps_max(self):
        """Inserting N > max distinct keys leaves exactly max entries."""
        cache = LRUCache[int, int](max_entries=5)
        for i in range(12):
            cache.put(i, i * 10)

        assert cache.size() == 5
        assert [k for k, _ in cache.entries()] == [7, 8, 9, 10, 11]
        assert cache.stats.evictions == 7

    def test_evicts_least_recently_used(self):
        """A recently read key survives; the stalest one goes."""
        cache = LRUCache[str, int](max_entries=3)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        cache.get("a")
        cache.put("d", 4)

        assert "b" not in cache
        assert [k for k, _ in cache.entries()] == ["c", "a", "d"]

    def test_untouched_entries_evicted_in_insertion_order(self):
        """With no reads, eviction follows insertion time."""
        cache = LRUCache[str, int](max_entries=2)
        cache.put("first", 1)
        cache.put("second", 2)
        cache.put("third", 3)

        assert "first" not in cache
        assert "second" in cache
        assert "third" in cache


class TestLRUCachePersistence:
    """Tests for save/load."""

    def test_save_then_load_restores_mapping_and_order(self, tmp_path):
        """A save/load cycle keeps every pair and the recency order."""
        path = tmp_path / "bitly.cache.yml"
        cache = LRUCache[str, str](max_entries=10)
        cache.put("http://bit.ly/a", "http://example.com/a")
        cache.put("http://bit.ly/b", "http://example.com/b")
        cache.put("http://bit.ly/c", "http://example.com/c")
        cache.get("http://bit.ly/a")

        assert cache.save(path) == 3

        restored = LRUCache[str, str](max_entries=10)
        assert restored.load(path) == 3
        assert restored.entries() == cache.entries()

    def test_save_writes_ordered_pairs(self, tmp_path):
        """The file holds a YAML list of [key, value] pairs."""
        path = tmp_path / "cache.yml"
        cache = LRUCache[str, str](max_entries=10)
        cache.put("x", "1")
        cache.put("y", "2")
        cache.save(path)

        assert yaml.safe_load(path.read_text()) == [["x", "1"], ["y", "2"]]

    def test_load_missing_file_is_empty(self, tmp_path):
        """Loading a file that does not exist loads nothing."""
        cache = LRUCache[str, str](max_entries=10)
        assert cache.load(tmp_path / "absent.yml") == 0
        assert cache.size() == 0

    def test_load_into_smaller_cache_keeps_most_recent(self, tmp_path):
        """Loading more pairs than capacity keeps the most recent ones."""
        path = tmp_path / "cache.yml"
        big = LRUCache[str, int](max_entries=10)
        for i in range(6):
            big.put(f"k{i}", i)
        big.save(path)

        small = LRUCache[str, int](max_entries=3)
        small.load(path)

        assert [k for k, _ in small.entries()] == ["k3", "k4", "k5"]

    def test_load_skips_malformed_pairs(self, tmp_path):
        """Pairs that are not two-element lists are skipped."""
        path = tmp_path / "cache.yml"
        path.write_text(yaml.safe_dump([["a", "1"], ["broken"], "nope", ["b", "2"]]))

        cache = LRUCache[str, str](max_entries=10)

        assert cache.load(path) == 2
        assert cache.entries() == [("a", "1"), ("b", "2")]

    def test_load_rejects_non_list(self, tmp_path):
        """A file that is not a list is an error."""
        path = tmp_path / "cache.yml"
        path.write_text("just: a mapping\n")

        with pytest.raises(ValueError):
            LRUCache().load(path)


class TestLRUCacheConcurrency:
    """Tests for concurrent access from threads."""

    def test_concurrent_puts_stay_bounded(self):
        """Many writer threads never push the cache past capacity."""
        cache = LRUCache[int, int](max_entries=100)

        def writer(offset):
            for i in range(500):
                cache.put(offset * 1000 + i, i)
                cache.get(offset * 1000 + i // 2)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.size() == 100
