"""
Relay service - the bucket loop.

Runs continuously: pick the next bucket, fetch its activities, expand the
links, publish, commit the checkpoint. Exactly one bucket is in flight at a
time.

Features:
- Idle polling once the relay has caught up with the provider
- Failed buckets are retried (never skipped) with exponential backoff
- Graceful shutdown at the end of the current bucket
- Expander caches restored at start, saved periodically and on shutdown
"""

import asyncio
import signal
from contextlib import AsyncExitStack
from pathlib import Path

import structlog

from linkrelay.config.settings import Settings
from linkrelay.errors import StartupError
from linkrelay.expanders.base import Expander
from linkrelay.expanders.bitly import BitlyExpander
from linkrelay.expanders.chain import ExpanderChain
from linkrelay.expanders.redirect import RedirectExpander, ShortenerExpander
from linkrelay.http.backoff import ExponentialBackoff
from linkrelay.http.client import HTTPClient, RetryConfig
from linkrelay.relay.buckets import BucketDecision, BucketScheduler, RelayPhase
from linkrelay.relay.pipeline import ExpansionPipeline
from linkrelay.relay.state import RelayState, StateStore
from linkrelay.stream.base import ActivityStream, Publisher
from linkrelay.stream.http_stream import HTTPActivityStream, HTTPPublisher
from linkrelay.stream.mock import MemoryPublisher, MockActivityStream

logger = structlog.get_logger(__name__)


class RelayService:
    """
    Service that relays buckets from the source stream to the destination.

    Usage:
        service = RelayService(stream, publisher, chain, scheduler, pipeline, basedir=path)
        await service.start()  # Runs until stop() is called
    """

    def __init__(
        self,
        stream: ActivityStream,
        publisher: Publisher,
        chain: ExpanderChain,
        scheduler: BucketScheduler,
        pipeline: ExpansionPipeline,
        basedir: Path,
        poll_timeout: float = 60.0,
        keyword: str | None = None,
        max_activities: int | None = None,
        cache_save_every: int = 10,
        backoff: ExponentialBackoff | None = None,
    ):
        self._stream = stream
        self._publisher = publisher
        self._chain = chain
        self._scheduler = scheduler
        self._pipeline = pipeline
        self._basedir = Path(basedir)
        self._poll_timeout = poll_timeout
        self._keyword = keyword
        self._max_activities = max_activities
        self._cache_save_every = cache_save_every
        self._backoff = backoff or ExponentialBackoff()
        self._running = False
        self._stop_event = asyncio.Event()
        self.buckets_relayed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """
        Ask the loop to exit after the bucket in flight.

        Safe to call from a signal handler. An idle wait ends immediately.
        """
        if self._running:
            logger.info("Stop requested, finishing current bucket")
        self._running = False
        self._stop_event.set()

    async def start(self) -> None:
        """Run the bucket loop until stop() is called."""
        self._running = True
        self._stop_event.clear()
        self._chain.load(self._basedir)
        logger.info(
            "Starting relay",
            checkpoint=self._format_checkpoint(),
            poll_timeout=self._poll_timeout,
        )
        try:
            while self._running:
                await self.tick()
        finally:
            self._running = False
            self._save_caches()
            logger.info(
                "Relay stopped",
                buckets_relayed=self.buckets_relayed,
                cache_hit_rate={
                    e.name: round(e.cache.stats.hit_rate, 3) for e in self._chain.expanders
                },
            )

    async def tick(self) -> BucketDecision | None:
        """
        Run one iteration of the loop.

        Returns:
            The scheduler's decision, or None if the bucket list was unavailable
        """
        try:
            available = await self._stream.list_buckets()
        except Exception as e:
            delay = self._backoff.next_delay()
            logger.error("Could not list buckets", error=str(e), retry_in=round(delay, 2))
            await self._wait(delay)
            return None

        decision = self._scheduler.decide(available)

        if decision.phase is RelayPhase.IDLE:
            logger.debug("No new bucket, idling", timeout=self._poll_timeout)
            await self._wait(self._poll_timeout)
            return decision

        try:
            await self.process_bucket(decision.bucket)
        except Exception as e:
            delay = self._backoff.next_delay()
            logger.error(
                "Bucket failed, will retry",
                bucket=decision.bucket,
                error=str(e),
                failures=self._backoff.failures,
                retry_in=round(delay, 2),
            )
            await self._wait(delay)
            return decision

        self._backoff.reset()
        return decision

    async def process_bucket(self, bucket: str) -> int:
        """
        Fetch, expand, publish and commit one bucket.

        Raises on any fetch, publish or commit failure; the checkpoint is
        only advanced once publishing succeeded.

        Returns:
            Number of activities published
        """
        activities = await self._stream.fetch_bucket(bucket, self._keyword)
        fetched = len(activities)
        if self._max_activities is not None:
            activities = activities[: self._max_activities]

        rewritten = await self._pipeline.run(activities)
        if rewritten:
            await self._publisher.publish(rewritten)

        self._scheduler.commit(bucket)
        self.buckets_relayed += 1

        logger.info(
            "Bucket relayed",
            bucket=bucket,
            fetched=fetched,
            published=len(rewritten),
        )

        if self.buckets_relayed % self._cache_save_every == 0:
            self._save_caches()

        return len(rewritten)

    def _save_caches(self) -> None:
        try:
            self._chain.save(self._basedir)
        except OSError as e:
            logger.warning("Could not save expander caches", error=str(e))

    async def _wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _format_checkpoint(self) -> str | None:
        checkpoint = self._scheduler.checkpoint
        return checkpoint.isoformat() if checkpoint else None


def build_chain(settings: Settings, client: HTTPClient) -> ExpanderChain:
    """Assemble the expander chain from configuration, most specific first."""
    expanders: list[Expander] = []
    if settings.bitly_configured:
        expanders.append(
            BitlyExpander(
                client,
                settings.bitly_access_token,
                max_entries=settings.cache_max_entries,
            )
        )
    if settings.shortener_domains:
        expanders.append(
            ShortenerExpander(
                client,
                settings.shortener_domains,
                max_entries=settings.cache_max_entries,
            )
        )
    if settings.fallback_expander:
        expanders.append(RedirectExpander(client, max_entries=settings.cache_max_entries))
    return ExpanderChain(expanders)


async def build_components(
    settings: Settings,
    stack: AsyncExitStack,
    use_mock: bool = False,
) -> tuple[ActivityStream, Publisher, ExpanderChain]:
    """
    Create the stream, publisher and expander chain.

    HTTP clients are entered on ``stack`` and close with it.

    Raises:
        StartupError: If the source or destination is not configured
    """
    expander_client = await stack.enter_async_context(
        HTTPClient(
            RetryConfig.transient_only(max_retries=settings.expander_max_retries),
            timeout=settings.http_timeout_seconds,
        )
    )
    chain = build_chain(settings, expander_client)

    if use_mock:
        return MockActivityStream(), MemoryPublisher(), chain

    if not settings.source_configured:
        raise StartupError("No source stream configured (--source-url)")
    if not settings.destination_configured:
        raise StartupError("No destination feed configured (--destination-url)")

    source_auth = None
    if settings.source_username and settings.source_password:
        source_auth = (settings.source_username, settings.source_password)
    source_client = await stack.enter_async_context(
        HTTPClient(timeout=settings.http_timeout_seconds, auth=source_auth)
    )

    destination_auth = None
    if settings.destination_username and settings.destination_password:
        destination_auth = (settings.destination_username, settings.destination_password)
    destination_client = await stack.enter_async_context(
        HTTPClient(timeout=settings.http_timeout_seconds, auth=destination_auth)
    )

    return (
        HTTPActivityStream(source_client, settings.source_url),
        HTTPPublisher(destination_client, settings.destination_url),
        chain,
    )


async def preflight(settings: Settings, use_mock: bool = False) -> None:
    """
    Check credentials and reachability before the relay starts.

    Raises:
        StartupError: If the stream or any expander fails its health check
    """
    async with AsyncExitStack() as stack:
        stream, publisher, chain = await build_components(settings, stack, use_mock)

        if not await stream.health_check():
            raise StartupError(f"bad {stream.name} config or severed network")
        if not await publisher.health_check():
            raise StartupError(f"bad {publisher.name} config or severed network")
        for name, healthy in (await chain.health_check()).items():
            if not healthy:
                raise StartupError(f"bad {name} config or severed network")

    logger.debug("Preflight checks passed")


async def run_relay(
    settings: Settings,
    state: RelayState,
    store: StateStore,
    use_mock: bool = False,
    install_signals: bool = True,
) -> RelayService:
    """
    Build the relay from configuration and run it until it is stopped.

    SIGTERM and SIGINT request a graceful stop at the end of the current bucket.
    """
    async with AsyncExitStack() as stack:
        stream, publisher, chain = await build_components(settings, stack, use_mock)
        service = RelayService(
            stream=stream,
            publisher=publisher,
            chain=chain,
            scheduler=BucketScheduler(state, store),
            pipeline=ExpansionPipeline(
                chain,
                concurrency=settings.worker_concurrency,
                provenance_tag=settings.provenance_tag,
            ),
            basedir=settings.basedir,
            poll_timeout=settings.poll_timeout_seconds,
            keyword=settings.stream_keyword,
            max_activities=settings.max_activities_per_bucket,
            cache_save_every=settings.cache_save_every_buckets,
        )

        loop = asyncio.get_running_loop()
        signals = (signal.SIGTERM, signal.SIGINT) if install_signals else ()
        for sig in signals:
            loop.add_signal_handler(sig, service.stop)
        try:
            await service.start()
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)
    return service
