"""
Unit tests for exponential backoff used by item state reads.
"""

import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from auction.backoff import calculate_backoff, RandomizedBackoff


class TestExponentialBackoff:
    """Test exponential backoff calculation"""

    def test_backoff_grows(self):
        """Delays double per attempt (jitter disabled)"""
        assert calculate_backoff(0, base=0.05, jitter=0) == 0.05
        assert calculate_backoff(1, base=0.05, jitter=0) == 0.1
        assert calculate_backoff(2, base=0.05, jitter=0) == 0.2

    def test_backoff_capped(self):
        assert calculate_backoff(20, base=0.05, max_delay=1.0, jitter=0) == 1.0

    def test_backoff_jitter_bounds(self):
        for _ in range(50):
            delay = calculate_backoff(0, base=0.05, jitter=0.025)
            assert 0.025 <= delay <= 0.075

    def test_backoff_never_negative(self):
        for _ in range(50):
            assert calculate_backoff(0, base=0.01, jitter=0.5) >= 0


class TestRandomizedBackoff:
    """Test stateful backoff"""

    def test_attempt_counter(self):
        backoff = RandomizedBackoff(jitter=0)

        first = backoff.next()
        second = backoff.next()

        assert backoff.attempt == 2
        assert second == first * 2

    def test_exhausted_after_max_attempts(self):
        backoff = RandomizedBackoff(max_attempts=2)

        assert not backoff.exhausted
        backoff.next()
        assert not backoff.exhausted
        backoff.next()
        assert backoff.exhausted

    def test_zero_attempts_is_exhausted(self):
        assert RandomizedBackoff(max_attempts=0).exhausted

    def test_reset(self):
        backoff = RandomizedBackoff(max_attempts=1)
        backoff.next()

        backoff.reset()

        assert backoff.attempt == 0
        assert not backoff.exhausted
