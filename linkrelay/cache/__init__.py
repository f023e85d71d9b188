"""Bounded in-process caching."""

from linkrelay.cache.lru import CacheEntry, CacheStats, LRUCache

__all__ = ["CacheEntry", "CacheStats", "LRUCache"]
