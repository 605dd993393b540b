"""Tests for ExponentialBackoff."""

from __future__ import annotations

import pytest

from proxypal.manager.backoff import ExponentialBackoff


class TestExponentialBackoff:
    """Tests for the delay calculation."""

    def test_default_schedule_without_jitter(self) -> None:
        """1s, 2s, 4s, 8s, 16s, then capped at 30s."""
        backoff = ExponentialBackoff(jitter=0.0)

        assert [backoff.delay(n) for n in range(7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_delays_never_decrease(self) -> None:
        backoff = ExponentialBackoff(jitter=0.0)
        delays = [backoff.delay(n) for n in range(10)]

        assert delays == sorted(delays)

    @pytest.mark.parametrize("attempt", [0, 3, 8])
    def test_jitter_stays_within_range(self, attempt: int) -> None:
        backoff = ExponentialBackoff(jitter=0.1)
        nominal = ExponentialBackoff(jitter=0.0).delay(attempt)

        for _ in range(50):
            delay = backoff.delay(attempt)
            assert nominal * 0.95 <= delay <= nominal * 1.05

    def test_delay_is_never_negative(self) -> None:
        backoff = ExponentialBackoff(base=0.0, jitter=1.0)

        assert backoff.delay(0) == 0.0
