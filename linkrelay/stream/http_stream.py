"""
JSON-over-HTTP source stream and destination feed.

Source endpoints (relative to ``base_url``):
    GET  /buckets                 -> ["201001010000", ...] or {"buckets": [...]}
    GET  /buckets/{bucket}        -> [{...}, ...] or {"activities": [...]}
                                     (optional ?keyword= server-side filter)

Destination endpoint:
    POST {url}                    <- {"activities": [{...}, ...]}

Both use HTTP basic auth when credentials are configured.
"""

from typing import Any

import structlog
from pydantic import ValidationError

from linkrelay.errors import BucketError
from linkrelay.http.client import HTTPClient, HTTPClientError
from linkrelay.stream.base import ActivityStream, Publisher
from linkrelay.stream.schemas import Activity

logger = structlog.get_logger(__name__)


def _unwrap(payload: Any, key: str) -> list[Any]:
    if isinstance(payload, dict):
        payload = payload.get(key, [])
    if not isinstance(payload, list):
        raise ValueError(f"Expected a list of {key}, got {type(payload).__name__}")
    return payload


class HTTPActivityStream(ActivityStream):
    """Bucketed activity stream served over HTTP."""

    name = "http-stream"

    def __init__(self, client: HTTPClient, base_url: str):
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def list_buckets(self) -> list[str]:
        try:
            response = await self._client.get(f"{self._base_url}/buckets")
            buckets = _unwrap(response.json(), "buckets")
        except (HTTPClientError, ValueError) as e:
            raise BucketError(f"Could not list buckets: {e}") from e
        return sorted(str(b) for b in buckets)

    async def fetch_bucket(self, bucket: str, keyword: str | None = None) -> list[Activity]:
        params = {"keyword": keyword} if keyword else None
        try:
            response = await self._client.get(
                f"{self._base_url}/buckets/{bucket}", params=params
            )
            raw = _unwrap(response.json(), "activities")
        except (HTTPClientError, ValueError) as e:
            raise BucketError(f"Could not fetch bucket {bucket}: {e}", bucket=bucket) from e

        activities = []
        for item in raw:
            try:
                activities.append(Activity.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed activity", bucket=bucket, error=str(e))
        return activities


class HTTPPublisher(Publisher):
    """Destination feed accepting batches of activities over HTTP."""

    name = "http-publisher"

    def __init__(self, client: HTTPClient, url: str):
        self._client = client
        self._url = url

    async def publish(self, activities: list[Activity]) -> None:
        body = {"activities": [a.model_dump(mode="json") for a in activities]}
        try:
            await self._client.post(self._url, json_body=body)
        except HTTPClientError as e:
            raise BucketError(f"Could not publish {len(activities)} activities: {e}") from e
