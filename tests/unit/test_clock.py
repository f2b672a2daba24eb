"""
Tests for the injectable clocks.
"""

from datetime import datetime, timezone

import pytest

from namlend_config.schema import BreakerConfig
from namlend_kernel.domain import clock as clock_module
from namlend_kernel.domain.clock import DeterministicClock, SystemClock
from namlend_services.rpc_gateway import CircuitBreakerRegistry


@pytest.fixture
def monotonic(monkeypatch):
    """Drive time.monotonic by hand: ``monotonic.now = 12.5``."""

    class Reading:
        now = 100.0

    monkeypatch.setattr(clock_module.time, "monotonic", lambda: Reading.now)
    return Reading


class TestSystemClock:
    def test_now_is_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc

    def test_monotonic_is_not_wall_clock(self, monotonic):
        monotonic.now = 42.0

        assert SystemClock().monotonic() == 42.0

    def test_breaker_cooldown_follows_monotonic_time(self, monotonic):
        breakers = CircuitBreakerRegistry(
            BreakerConfig(failure_threshold=1, cooldown_ms=15000), SystemClock(),
        )
        breakers.record_failure("record_payment")

        monotonic.now = 110.0
        assert breakers.retry_after("record_payment") == pytest.approx(5.0)

        monotonic.now = 115.0
        assert not breakers.is_open("record_payment")


class TestDeterministicClock:
    def test_monotonic_tracks_advance(self):
        clock = DeterministicClock(datetime(2025, 1, 15, tzinfo=timezone.utc))
        start = clock.monotonic()

        clock.advance(30)

        assert clock.monotonic() - start == 30
