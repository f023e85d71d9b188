"""
Expander for bitly short links, resolved through the bitly v4 API.

    POST https://api-ssl.bitly.com/v4/expand  {"bitlink_id": "bit.ly/abc"}
    ->   {"long_url": "http://example.com/page", ...}
"""

import httpx

from linkrelay.cache.lru import DEFAULT_MAX_ENTRIES
from linkrelay.expanders.base import Expander, host_in
from linkrelay.http.client import HTTPClient, HTTPClientError

BITLY_API_URL = "https://api-ssl.bitly.com/v4"
BITLY_DOMAINS = frozenset({"bit.ly", "j.mp", "bitly.com", "bitly.is"})


class BitlyExpander(Expander):
    """Resolves bit.ly (and sibling domain) links via the bitly API."""

    name = "bitly"

    def __init__(
        self,
        client: HTTPClient,
        access_token: str,
        domains: frozenset[str] = BITLY_DOMAINS,
        api_url: str = BITLY_API_URL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        super().__init__(max_entries=max_entries)
        self._client = client
        self._domains = frozenset(d.lower() for d in domains)
        self._api_url = api_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {access_token}"}

    def claims(self, url: str) -> bool:
        return host_in(url, self._domains)

    async def _lookup(self, url: str) -> str:
        parsed = httpx.URL(url)
        bitlink_id = f"{parsed.host}{parsed.path}".rstrip("/")
        response = await self._client.post(
            f"{self._api_url}/expand",
            headers=self._headers,
            json_body={"bitlink_id": bitlink_id},
        )
        long_url = response.json().get("long_url")
        if not long_url:
            raise HTTPClientError(
                f"bitly returned no long_url for {bitlink_id}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return long_url

    async def health_check(self) -> bool:
        """Ping the bitly user endpoint with our token."""
        try:
            await self._client.get(f"{self._api_url}/user", headers=self._headers)
        except HTTPClientError:
            return False
        return True
