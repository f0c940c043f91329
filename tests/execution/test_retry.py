"""Tests for exponential backoff."""

from __future__ import annotations

import pytest

from prcanary.core.errors import UnavailableError, ValidationError
from prcanary.execution.retry import ExponentialBackoff
from tests._support.builders import fast_settings


class TestExponentialBackoff:
    def test_doubles_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=100.0, jitter_range=0.0)
        assert [backoff.next_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0, jitter_range=0.0)
        assert backoff.next_delay(10) == 10.0

    def test_huge_attempt_does_not_overflow(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0, jitter_range=0.0)
        assert backoff.next_delay(10_000) == 10.0

    @pytest.mark.parametrize("attempt", range(8))
    def test_jitter_stays_within_bounds(self, attempt):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0, jitter_range=0.5)
        delay = backoff.next_delay(attempt)
        nominal = min(2.0**attempt, 30.0)
        assert nominal * 0.5 <= delay <= 30.0

    def test_retry_after_hint_raises_delay(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, jitter_range=0.0)
        assert backoff.delay_for(0, UnavailableError("busy", retry_after=7.0)) == 7.0

    def test_retry_after_hint_is_capped(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter_range=0.0)
        assert backoff.delay_for(0, UnavailableError("busy", retry_after=500.0)) == 5.0

    def test_error_without_hint(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter_range=0.0)
        assert backoff.delay_for(1, ValidationError("bad")) == 2.0

    def test_from_settings(self):
        backoff = ExponentialBackoff.from_settings(fast_settings())
        assert backoff.base_delay == 0.01
        assert backoff.max_delay == 0.05
        assert backoff.jitter_range == 0.0
