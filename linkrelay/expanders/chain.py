"""
Ordered chain of expanders.

The first expander whose claims() accepts a URL expands it; a URL nobody
claims is returned unchanged. Each expander keeps its own cache, persisted
to ``<basedir>/<expander name>.cache.yml``.
"""

from pathlib import Path

import structlog
import yaml

from linkrelay.expanders.base import Expander

logger = structlog.get_logger(__name__)

CACHE_SUFFIX = ".cache.yml"


class ExpanderChain:
    """
    First-claim resolution over an ordered list of expanders.

    Example:
        chain = ExpanderChain([BitlyExpander(client, token), RedirectExpander(client)])
        await chain.resolve("http://bit.ly/abc")   # handled by bitly
        await chain.resolve("http://example.com")  # falls through to redirect
    """

    def __init__(self, expanders: list[Expander]):
        names = [e.name for e in expanders]
        if len(set(names)) != len(names):
            raise ValueError(f"Expander names must be unique, got {names}")
        self._expanders = list(expanders)

    @property
    def expanders(self) -> list[Expander]:
        return list(self._expanders)

    def expander_for(self, url: str) -> Expander | None:
        for expander in self._expanders:
            if expander.claims(url):
                return expander
        return None

    async def resolve(self, url: str) -> str:
        expander = self.expander_for(url)
        if expander is None:
            return url
        return await expander.expand(url)

    async def health_check(self) -> dict[str, bool]:
        return {e.name: await e.health_check() for e in self._expanders}

    @staticmethod
    def cache_path(basedir: Path, expander: Expander) -> Path:
        return Path(basedir) / f"{expander.name}{CACHE_SUFFIX}"

    def load(self, basedir: Path) -> dict[str, int]:
        """
        Restore every expander's cache from ``basedir``.

        An unreadable cache file is logged and skipped; the expander starts
        empty.
        """
        loaded = {}
        for expander in self._expanders:
            path = self.cache_path(basedir, expander)
            try:
                loaded[expander.name] = expander.load(path)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning(
                    "Could not load expander cache",
                    expander=expander.name,
                    path=str(path),
                    error=str(e),
                )
                loaded[expander.name] = 0
        logger.info("Loaded expander caches", **loaded)
        return loaded

    def save(self, basedir: Path) -> dict[str, int]:
        """Write every expander's cache under ``basedir``."""
        saved = {}
        for expander in self._expanders:
            saved[expander.name] = expander.save(self.cache_path(basedir, expander))
        logger.debug("Saved expander caches", **saved)
        return saved
