"""
Bucket ids and the state machine that picks the next bucket to relay.

A bucket id is a UTC timestamp at minute granularity, formatted
``YYYYMMDDHHMM`` (e.g. ``201001010000``). The provider serves a window of
buckets that grows at the new end and expires at the old end.

On each tick the scheduler compares the checkpoint (the last bucket that was
relayed) with the available window:

- checkpoint older than the oldest bucket: the data in between has expired
  upstream; snap forward and relay the oldest bucket. This drops the expired
  range on purpose.
- checkpoint at or past the newest bucket: IDLE, poll again later.
- otherwise: CATCHING_UP, relay the first bucket after the checkpoint.

A checkpoint moves only through commit(), which persists the new value before
adopting it in memory. A crash mid-bucket therefore replays that bucket and
never skips one.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog

from linkrelay.relay.state import RelayState, StateStore

logger = structlog.get_logger(__name__)

BUCKET_FORMAT = "%Y%m%d%H%M"
BUCKET_INTERVAL = timedelta(minutes=1)


def truncate(moment: datetime) -> datetime:
    """Round ``moment`` down to its bucket boundary, in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(second=0, microsecond=0)


def format_bucket(moment: datetime) -> str:
    return truncate(moment).strftime(BUCKET_FORMAT)


def parse_bucket(bucket: str) -> datetime:
    """
    Parse a bucket id into an aware UTC datetime.

    Raises:
        ValueError: If ``bucket`` is not a YYYYMMDDHHMM string
    """
    return datetime.strptime(str(bucket), BUCKET_FORMAT).replace(tzinfo=timezone.utc)


def parse_checkpoint(value: str) -> datetime:
    """
    Parse a user-supplied resume point: a bucket id or an ISO 8601 time.

    Raises:
        ValueError: If ``value`` is neither
    """
    value = value.strip()
    try:
        return parse_bucket(value)
    except ValueError:
        pass
    return truncate(datetime.fromisoformat(value))


class RelayPhase(str, Enum):
    """Where the relay stands relative to the provider's window."""

    CATCHING_UP = "catching_up"
    IDLE = "idle"


@dataclass(frozen=True)
class BucketDecision:
    """Outcome of one scheduler tick."""

    phase: RelayPhase
    bucket: str | None = None
    snapped: bool = False


class BucketScheduler:
    """
    Chooses buckets and commits checkpoints for one relay process.

    Usage:
        scheduler = BucketScheduler(state, store)
        decision = scheduler.decide(await stream.list_buckets())
        if decision.phase is RelayPhase.CATCHING_UP:
            ...relay decision.bucket...
            scheduler.commit(decision.bucket)
    """

    def __init__(self, state: RelayState, store: StateStore | None = None):
        self._state = state
        self._store = store

    @property
    def checkpoint(self) -> datetime | None:
        return self._state.checkpoint

    def decide(self, available: list[str]) -> BucketDecision:
        """
        Pick the next bucket from the provider's available bucket ids.

        A relay with no checkpoint yet starts at the newest bucket.
        """
        if not available:
            return BucketDecision(RelayPhase.IDLE)

        moments = sorted(parse_bucket(b) for b in available)
        oldest, newest = moments[0], moments[-1]
        checkpoint = self._state.checkpoint

        if checkpoint is None:
            return BucketDecision(RelayPhase.CATCHING_UP, format_bucket(newest))

        if checkpoint < oldest:
            skipped = int((oldest - checkpoint) / BUCKET_INTERVAL) - 1
            logger.warning(
                "Checkpoint older than available buckets, skipping expired range",
                checkpoint=format_bucket(checkpoint),
                oldest=format_bucket(oldest),
                skipped_buckets=max(skipped, 0),
            )
            return BucketDecision(RelayPhase.CATCHING_UP, format_bucket(oldest), snapped=True)

        if checkpoint >= newest:
            return BucketDecision(RelayPhase.IDLE)

        following = next(m for m in moments if m > checkpoint)
        return BucketDecision(RelayPhase.CATCHING_UP, format_bucket(following))

    def commit(self, bucket: str) -> datetime:
        """
        Record ``bucket`` as relayed and persist the new checkpoint.

        Raises:
            ValueError: If ``bucket`` does not lie after the current checkpoint
        """
        moment = parse_bucket(bucket)
        current = self._state.checkpoint
        if current is not None and moment <= current:
            raise ValueError(
                f"Bucket {bucket} is not after checkpoint {format_bucket(current)}"
            )

        if self._store is not None:
            self._store.save(RelayState(pid=self._state.pid, checkpoint=moment))
        self._state.checkpoint = moment
        return moment
