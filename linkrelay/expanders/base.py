"""
Base expander interface and shared functionality for link expanders.

Each expander must implement claims() and _lookup(). The base class provides:
- Memoization through its own LRUCache
- Sharing one lookup between concurrent callers asking for the same URL
- Best-effort semantics: any lookup failure yields the original URL
- Saving and restoring the cache to a file
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
import structlog

from linkrelay.cache.lru import DEFAULT_MAX_ENTRIES, LRUCache

logger = structlog.get_logger(__name__)


def url_host(url: str) -> str | None:
    """Lower-cased host of ``url``, or None if it cannot be parsed."""
    try:
        host = httpx.URL(url).host
    except (httpx.InvalidURL, ValueError):
        return None
    return host.lower() or None


def host_in(url: str, domains: frozenset[str]) -> bool:
    """True if the host of ``url`` is one of ``domains`` or a subdomain of one."""
    host = url_host(url)
    if host is None:
        return False
    return any(host == d or host.endswith("." + d) for d in domains)


class Expander(ABC):
    """
    Abstract base class for link expanders.

    Subclasses must implement:
        - name: Used for logging and the cache file name
        - claims(): Whether this expander is responsible for a URL
        - _lookup(): The network call resolving a URL to its long form
    """

    name: str = "expander"

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._cache: LRUCache[str, str] = LRUCache(max_entries=max_entries)
        self._inflight: dict[str, asyncio.Future[str]] = {}
        self.lookups = 0
        self.failures = 0

    @abstractmethod
    def claims(self, url: str) -> bool:
        """Return True if this expander handles ``url``."""

    @abstractmethod
    async def _lookup(self, url: str) -> str:
        """
        Resolve ``url`` over the network.

        Implementations retry transient failures themselves (through
        HTTPClient) and raise once the retry bound is exhausted.
        """

    @property
    def cache(self) -> LRUCache[str, str]:
        return self._cache

    async def expand(self, url: str) -> str:
        """
        Return the long form of ``url``.

        Cached results are returned without a network call. On failure the
        original URL is returned and nothing is cached, so a later batch
        tries again.
        """
        cached = self._cache.get(url)
        if cached is not None:
            return cached

        # No await between the check and the insert: one lookup per URL
        future = self._inflight.get(url)
        owner = future is None
        if owner:
            future = asyncio.ensure_future(self._lookup(url))
            self._inflight[url] = future
            self.lookups += 1

        try:
            expanded = await asyncio.shield(future)
        except Exception as e:
            if owner:
                self.failures += 1
                logger.debug(
                    "Expansion failed, keeping original",
                    expander=self.name,
                    url=url,
                    error=str(e) or type(e).__name__,
                )
            return url
        finally:
            if owner:
                self._inflight.pop(url, None)

        if owner:
            self._cache.put(url, expanded)
            logger.debug("Expanded", expander=self.name, url=url, expanded=expanded)
        return expanded

    async def health_check(self) -> bool:
        """Check credentials and reachability. Expanders without either pass."""
        return True

    def load(self, path: Path) -> int:
        """Restore the cache from ``path``. Returns the number of entries read."""
        return self._cache.load(path)

    def save(self, path: Path) -> int:
        """Write the cache to ``path``. Returns the number of entries written."""
        return self._cache.save(path)
