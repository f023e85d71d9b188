"""
Concurrent link expansion for one bucket of activities.

1. Keep only activities whose body contains an http(s) link.
2. Hand those to a fixed pool of workers. Each worker resolves every link in
   an activity through the expander chain, rewrites the body, and appends the
   provenance tag.
3. Return once every activity is done. Result order is not input order.

Expansion is network-bound per URL; the pool size bounds how many lookups
run at once regardless of the batch size.
"""

import asyncio
import time
from dataclasses import dataclass, field

import structlog

from linkrelay.expanders.chain import ExpanderChain
from linkrelay.stream.schemas import URL_PATTERN, Activity

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 32


@dataclass
class PipelineStats:
    """Counters for one pipeline run."""

    activities: int = 0
    linked: int = 0
    urls: int = 0
    rewritten_urls: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time


class ExpansionPipeline:
    """
    Filters, fans out and fans back in one batch of activities.

    Usage:
        pipeline = ExpansionPipeline(chain, concurrency=32, provenance_tag="link-relay")
        rewritten = await pipeline.run(activities)
    """

    def __init__(
        self,
        chain: ExpanderChain,
        concurrency: int = DEFAULT_CONCURRENCY,
        provenance_tag: str = "link-relay",
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._chain = chain
        self.concurrency = concurrency
        self.provenance_tag = provenance_tag
        self.last_stats: PipelineStats | None = None

    @staticmethod
    def select(activities: list[Activity]) -> list[Activity]:
        """Activities that contain at least one link."""
        return [a for a in activities if a.has_links]

    async def rewrite(self, activity: Activity, stats: PipelineStats | None = None) -> Activity:
        """Expand every link in ``activity`` in place and tag it."""
        resolved: dict[str, str] = {}
        for url in activity.urls:
            if url not in resolved:
                resolved[url] = await self._chain.resolve(url)

        activity.body = URL_PATTERN.sub(
            lambda match: resolved.get(match.group(0), match.group(0)),
            activity.body,
        )
        activity.sources.append(self.provenance_tag)

        if stats is not None:
            stats.urls += len(resolved)
            stats.rewritten_urls += sum(1 for url, long in resolved.items() if url != long)
        return activity

    async def run(self, activities: list[Activity]) -> list[Activity]:
        """
        Expand links across ``activities``.

        Returns:
            The rewritten activities; activities without links are not included
        """
        stats = PipelineStats(activities=len(activities))
        linked = self.select(activities)
        stats.linked = len(linked)
        self.last_stats = stats
        if not linked:
            return []

        queue: asyncio.Queue[Activity] = asyncio.Queue()
        for activity in linked:
            queue.put_nowait(activity)
        results: list[Activity] = []

        async def worker() -> None:
            while True:
                try:
                    activity = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results.append(await self.rewrite(activity, stats))

        workers = [
            asyncio.create_task(worker(), name=f"expander_worker_{i}")
            for i in range(min(self.concurrency, len(linked)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        logger.debug(
            "Pipeline completed",
            activities=stats.activities,
            linked=stats.linked,
            urls=stats.urls,
            rewritten_urls=stats.rewritten_urls,
            workers=len(workers),
            elapsed_seconds=round(stats.elapsed_seconds, 2),
        )
        return results
