"""Tests for bucket retry backoff."""

from linkrelay.http.backoff import ExponentialBackoff


class TestExponentialBackoff:
    """Tests for ExponentialBackoff delay calculation."""

    def test_delays_double_without_jitter(self):
        """With multiplier=2 and no jitter, delays should double."""
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, jitter_range=0.0)

        assert [backoff.next_delay() for _ in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_caps_at_max_delay(self):
        """Delay should never exceed max_delay."""
        backoff = ExponentialBackoff(base_delay=10.0, max_delay=30.0, jitter_range=0.0)
        delays = [backoff.next_delay() for _ in range(5)]

        assert delays[-1] == 30.0

    def test_jitter_stays_within_range(self):
        """Jittered delays stay within +/- jitter_range of the base."""
        backoff = ExponentialBackoff(base_delay=4.0, max_delay=4.0, jitter_range=0.25)

        for _ in range(100):
            assert 3.0 <= backoff.next_delay() <= 5.0

    def test_reset_counts_from_zero(self):
        """After reset, delays start from base again."""
        backoff = ExponentialBackoff(base_delay=1.0, jitter_range=0.0)
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.failures == 2

        backoff.reset()

        assert backoff.failures == 0
        assert backoff.next_delay() == 1.0
