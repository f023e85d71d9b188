"""
Expanders that resolve a link by following its HTTP redirects.

RedirectExpander claims every URL and belongs at the end of a chain as the
fallback. ShortenerExpander does the same lookup but only for a list of
known shortener domains.
"""

from collections.abc import Iterable

from linkrelay.cache.lru import DEFAULT_MAX_ENTRIES
from linkrelay.expanders.base import Expander, host_in
from linkrelay.http.client import HTTPClient, HTTPClientError

# Servers that refuse HEAD get a GET instead
HEAD_REFUSED_STATUSES = frozenset({403, 405, 501})


class RedirectExpander(Expander):
    """Catch-all expander: the long form is wherever the redirects end."""

    name = "redirect"

    def __init__(self, client: HTTPClient, max_entries: int = DEFAULT_MAX_ENTRIES):
        super().__init__(max_entries=max_entries)
        self._client = client

    def claims(self, url: str) -> bool:
        return True

    async def _lookup(self, url: str) -> str:
        try:
            response = await self._client.head(url, follow_redirects=True)
        except HTTPClientError as e:
            if e.status_code not in HEAD_REFUSED_STATUSES:
                raise
            response = await self._client.get(url, follow_redirects=True)
        return str(response.url)


class ShortenerExpander(RedirectExpander):
    """Follows redirects for known shortener domains only."""

    name = "shortener"

    def __init__(
        self,
        client: HTTPClient,
        domains: Iterable[str],
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        super().__init__(client, max_entries=max_entries)
        self._domains = frozenset(d.lower() for d in domains)

    def claims(self, url: str) -> bool:
        return host_in(url, self._domains)
