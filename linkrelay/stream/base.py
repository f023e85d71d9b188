"""
Collaborator interfaces for the source stream and the destination feed.

The relay only needs three things from a provider: the ordered list of
buckets it currently serves, the activities inside one bucket, and a way
to publish a batch of activities.
"""

from abc import ABC, abstractmethod

from linkrelay.stream.schemas import Activity


class ActivityStream(ABC):
    """
    Abstract source of bucketed activities.

    Subclasses must implement:
        - list_buckets(): Bucket ids currently available, oldest first
        - fetch_bucket(): Activities in one bucket
    """

    name: str = "stream"

    @abstractmethod
    async def list_buckets(self) -> list[str]:
        """Return the available bucket ids, oldest first."""

    @abstractmethod
    async def fetch_bucket(self, bucket: str, keyword: str | None = None) -> list[Activity]:
        """
        Fetch the activities in ``bucket``.

        Args:
            bucket: Bucket id as returned by list_buckets()
            keyword: Optional server-side keyword filter
        """

    async def health_check(self) -> bool:
        """Check that the provider is reachable and accepts our credentials."""
        try:
            await self.list_buckets()
            return True
        except Exception:
            return False


class Publisher(ABC):
    """Abstract destination feed."""

    name: str = "publisher"

    @abstractmethod
    async def publish(self, activities: list[Activity]) -> None:
        """Publish a batch of activities. Raises on failure."""

    async def health_check(self) -> bool:
        return True
