"""
In-memory stream and publisher for testing and development.

MockActivityStream either serves a fixed mapping of bucket -> activities or,
when none is given, synthesizes a rolling window of minute buckets ending at
the current minute with link-bearing activities. Useful for:
- Running the relay without provider credentials (``link-relay --mock``)
- Testing the bucket loop end to end
"""

import random
from datetime import datetime, timezone

import structlog

from linkrelay.relay.buckets import BUCKET_INTERVAL, format_bucket, truncate
from linkrelay.stream.base import ActivityStream, Publisher
from linkrelay.stream.schemas import Activity

logger = structlog.get_logger(__name__)

SAMPLE_BODIES = [
    "reading http://bit.ly/{slug} over coffee",
    "new post up: http://tinyurl.com/{slug}",
    "this thread http://t.co/{slug} is worth it",
    "no links in this one, just a status update",
    "two for one http://bit.ly/{slug} and http://is.gd/{slug}",
    "docs moved to https://example.org/docs/{slug}",
]


class MockActivityStream(ActivityStream):
    """Activity stream backed by memory."""

    name = "mock-stream"

    def __init__(
        self,
        buckets: dict[str, list[Activity]] | None = None,
        window_minutes: int = 30,
        activities_per_bucket: int = 5,
        seed: int | None = None,
    ):
        self._buckets = buckets
        self._window = window_minutes
        self._per_bucket = activities_per_bucket
        self._random = random.Random(seed)
        self.fetches: list[str] = []

    async def list_buckets(self) -> list[str]:
        if self._buckets is not None:
            return sorted(self._buckets)
        newest = truncate(datetime.now(timezone.utc))
        return [
            format_bucket(newest - BUCKET_INTERVAL * offset)
            for offset in range(self._window - 1, -1, -1)
        ]

    async def fetch_bucket(self, bucket: str, keyword: str | None = None) -> list[Activity]:
        self.fetches.append(bucket)
        if self._buckets is not None:
            activities = [a.model_copy(deep=True) for a in self._buckets.get(bucket, [])]
        else:
            activities = self._generate(bucket)
        if keyword:
            activities = [a for a in activities if keyword.lower() in a.body.lower()]
        return activities

    def _generate(self, bucket: str) -> list[Activity]:
        activities = []
        for i in range(self._per_bucket):
            slug = "".join(self._random.choices("abcdefghjkmnpqrstuvwxyz23456789", k=6))
            template = self._random.choice(SAMPLE_BODIES)
            activities.append(
                Activity(
                    id=f"mock_{bucket}_{i}",
                    body=template.format(slug=slug),
                    source_resource=f"mock://stream/{bucket}",
                    sources=["mock"],
                )
            )
        return activities


class MemoryPublisher(Publisher):
    """Publisher that keeps every published batch in memory and logs it."""

    name = "memory-publisher"

    def __init__(self):
        self.batches: list[list[Activity]] = []

    async def publish(self, activities: list[Activity]) -> None:
        self.batches.append(list(activities))
        for activity in activities:
            logger.info("Published activity", id=activity.id, body=activity.body)

    @property
    def published(self) -> list[Activity]:
        return [a for batch in self.batches for a in batch]
