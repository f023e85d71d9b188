"""
Backoff between retries of a failed bucket.

A bucket that fails to fetch or publish is retried on the next loop
iteration. Consecutive failures space those retries out so an outage at the
provider does not turn into a tight request loop.
"""

import random


class ExponentialBackoff:
    """
    Exponential backoff with jitter.

    Delay for the n-th consecutive failure: min(base * multiplier^n, max_delay),
    then jittered by +/- jitter_range of itself. Call reset() once a bucket
    goes through.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0)
        try:
            await process(bucket)
            backoff.reset()
        except BucketError:
            await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.25,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._failures = 0

    @property
    def failures(self) -> int:
        """Consecutive failures since the last reset."""
        return self._failures

    def next_delay(self) -> float:
        """Record one more failure and return how long to wait before retrying."""
        delay = min(self.base_delay * (self.multiplier**self._failures), self.max_delay)
        if self.jitter_range:
            delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        self._failures += 1
        return max(0.0, delay)

    def reset(self) -> None:
        self._failures = 0
