"""
Bounded least-recently-used cache.

Memoizes URL expansions for the lifetime of the relay. Entries are kept in an
OrderedDict in recency order: the front holds the entry that was used least
recently (ties broken by insertion time, since a fresh insert goes to the
back), so eviction pops from the front until the cache is back within bound.

The contents serialize to YAML as an ordered list of ``[key, value]`` pairs,
oldest first. Loading replays the pairs in that order, so recency survives a
restart.
"""

import os
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, TypeVar

import structlog
import yaml

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_MAX_ENTRIES = 50_000


@dataclass
class CacheEntry(Generic[K, V]):
    """A cached value plus the cache's own accounting for it."""

    key: K
    value: V
    hits: int = 0
    created_at: float = field(default_factory=time.time)
    accessed_at: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.hits += 1
        self.accessed_at = time.time()


@dataclass
class CacheStats:
    """Counters for cache activity since creation."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class LRUCache(Generic[K, V]):
    """
    Thread-safe LRU cache with size-bounded eviction.

    All mutation and reordering happens under a single lock. The ``compute``
    function passed to ``get`` runs outside the lock so a slow computation
    never blocks other callers.

    Example:
        cache = LRUCache[str, str](max_entries=2)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.get("a")          # "a" is now most recent
        cache.put("c", "3")     # evicts "b"
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[K, CacheEntry[K, V]] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    def get(self, key: K, compute: Callable[[K], V] | None = None) -> V | None:
        """
        Return the cached value for ``key``, computing it on a miss.

        Args:
            key: Cache key
            compute: Called with the key on a miss; its result is stored.

        Returns:
            The cached or computed value, or None on a miss with no compute.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.touch()
                self._entries.move_to_end(key)
                self._stats.hits += 1
                return entry.value
            self._stats.misses += 1

        if compute is None:
            return None

        value = compute(key)
        self.put(key, value)
        return value

    def put(self, key: K, value: V) -> None:
        """Insert or replace ``key`` as the most recently used entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.value = value
                entry.touch()
                self._entries.move_to_end(key)
            else:
                self._entries[key] = CacheEntry(key=key, value=value)
            self._evict()

    def delete(self, key: K) -> bool:
        """Remove ``key``. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> list[tuple[K, V]]:
        """Return (key, value) pairs from least to most recently used."""
        with self._lock:
            return [(entry.key, entry.value) for entry in self._entries.values()]

    def entry(self, key: K) -> CacheEntry[K, V] | None:
        """Return the accounting record for ``key`` without touching it."""
        with self._lock:
            return self._entries.get(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def _evict(self) -> None:
        # Caller holds the lock
        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Evicted cache entry", key=key)

    def save(self, path: Path) -> int:
        """
        Write the cache contents to ``path`` as YAML.

        The file is replaced atomically so a crash mid-write leaves the
        previous copy intact.

        Returns:
            Number of entries written
        """
        pairs = [[key, value] for key, value in self.entries()]
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(pairs, f, default_flow_style=False, allow_unicode=True)
        os.replace(tmp_path, path)
        return len(pairs)

    def load(self, path: Path) -> int:
        """
        Replay (key, value) pairs from a file written by ``save``.

        Missing files are treated as an empty cache.

        Returns:
            Number of entries read
        """
        path = Path(path)
        if not path.exists():
            return 0

        with open(path, encoding="utf-8") as f:
            pairs: Any = yaml.safe_load(f) or []

        if not isinstance(pairs, list):
            raise ValueError(f"Cache file {path} does not hold a list of pairs")

        count = 0
        for pair in pairs:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                logger.warning("Skipping malformed cache pair", path=str(path), pair=pair)
                continue
            key, value = pair
            self.put(key, value)
            count += 1
        return count
