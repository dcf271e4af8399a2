"""
Unit Tests - Exponential Backoff
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from snap_bridge.exchange.backoff import ExponentialBackoff


class TestExponentialBackoff:

    def test_doubles_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=1.0, multiplier=2.0, max_delay=60.0, jitter=0)
        assert [backoff.get_delay() for _ in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter=0)
        delays = [backoff.get_delay() for _ in range(10)]
        assert max(delays) == 5.0
        assert delays[-1] == 5.0

    def test_jitter_never_exceeds_cap(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=3.0, jitter=1.0)
        assert all(backoff.get_delay() <= 3.0 for _ in range(50))

    def test_huge_attempt_count_does_not_overflow(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=600.0, jitter=0)
        for _ in range(5000):
            delay = backoff.get_delay()
        assert delay == 600.0

    def test_reset(self):
        backoff = ExponentialBackoff(jitter=0)
        backoff.get_delay()
        backoff.get_delay()
        assert backoff.attempt == 2
        backoff.reset()
        assert backoff.attempt == 0
        assert backoff.get_delay() == 1.0

    @pytest.mark.parametrize("kwargs", [
        {"base_delay": -1},
        {"max_delay": -1},
        {"jitter": 1.5},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            ExponentialBackoff(**kwargs)
