"""Tests for client-side rate limiting."""

import asyncio
import threading
import time
from datetime import UTC, datetime

import pytest

from vkapi import InvalidConfigurationError, RateLimiter
from vkapi._rate_limit import min_interval_ms_for


class FakeClock:
    """Manually advanced monotonic clock; `sleep` advances it as well."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Interval formula
# =============================================================================


class TestMinIntervalFormula:
    """Tests for min_interval_ms_for()."""

    @pytest.mark.parametrize(
        "requests_per_second, expected_ms",
        [
            (3, 334),
            (1, 1001),
            (20, 51),
            (0.5, 2001),
            (1000, 2),
        ],
    )
    def test_interval_is_floor_plus_one(self, requests_per_second, expected_ms):
        assert min_interval_ms_for(requests_per_second) == expected_ms

    def test_zero_rate_disables_throttling(self):
        assert min_interval_ms_for(0) == 0

    def test_negative_rate_is_rejected(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            min_interval_ms_for(-1)

        assert exc_info.value.field == "requests_per_second"

    def test_invalid_configuration_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            min_interval_ms_for(-0.1)


# =============================================================================
# Configuration
# =============================================================================


class TestRateLimiterConfiguration:
    """Tests for RateLimiter rate updates."""

    def test_default_rate_is_three_per_second(self):
        limiter = RateLimiter()

        assert limiter.requests_per_second == 3.0
        assert limiter.min_interval_ms == 334

    def test_setting_rate_updates_interval(self):
        limiter = RateLimiter()

        limiter.requests_per_second = 20

        assert limiter.requests_per_second == 20
        assert limiter.min_interval_ms == 51

    def test_negative_rate_leaves_previous_state_untouched(self):
        limiter = RateLimiter(requests_per_second=3)

        with pytest.raises(InvalidConfigurationError):
            limiter.requests_per_second = -5

        assert limiter.requests_per_second == 3
        assert limiter.min_interval_ms == 334

    def test_init_fails_with_negative_rate(self):
        with pytest.raises(InvalidConfigurationError):
            RateLimiter(requests_per_second=-1)

    def test_init_fails_when_clock_is_none(self):
        with pytest.raises(AssertionError):
            RateLimiter(clock=None)  # type: ignore


# =============================================================================
# Waiting
# =============================================================================


class TestRateLimiterWait:
    """Tests for RateLimiter.wait() with an injected clock."""

    def test_first_call_never_waits(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)

        limiter.wait()

        assert clock.sleeps == []
        assert limiter.last_invoke_time is not None

    def test_second_immediate_call_waits_min_interval(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)

        limiter.wait()
        limiter.wait()

        assert clock.sleeps == [pytest.approx(0.334)]

    def test_waits_only_the_remaining_part_of_the_interval(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)

        limiter.wait()
        clock.now += 0.200
        limiter.wait()

        assert clock.sleeps == [pytest.approx(0.134)]

    def test_no_wait_when_interval_already_elapsed(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)

        limiter.wait()
        clock.now += 1.0
        limiter.wait()

        assert clock.sleeps == []

    def test_zero_rate_never_waits(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=0, clock=clock, sleep=clock.sleep)

        for _ in range(10):
            limiter.wait()

        assert clock.sleeps == []

    def test_successive_reservations_are_spaced_by_min_interval(self):
        """Callers reserving at the same instant get consecutive slots."""
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)

        delays = [limiter.reserve() for _ in range(4)]

        assert delays == [0.0, pytest.approx(0.334), pytest.approx(0.668), pytest.approx(1.002)]

    def test_mark_counts_as_an_invocation(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)

        limiter.mark()
        limiter.wait()

        assert clock.sleeps == [pytest.approx(0.334)]

    def test_mark_does_not_move_a_reserved_slot_backwards(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_second=3, clock=clock, sleep=clock.sleep)
        limiter.reserve()
        limiter.reserve()  # slot reserved 334ms ahead

        limiter.mark()

        assert limiter.reserve() == pytest.approx(0.668)


class TestRateLimiterObservables:
    """Tests for last_invoke_time and time_since_last_invoke."""

    def test_nothing_recorded_before_first_call(self):
        limiter = RateLimiter()

        assert limiter.last_invoke_time is None
        assert limiter.time_since_last_invoke is None

    def test_last_invoke_time_is_recorded_in_utc(self):
        limiter = RateLimiter(requests_per_second=0)
        before = datetime.now(UTC)

        limiter.wait()

        assert limiter.last_invoke_time is not None
        assert limiter.last_invoke_time.tzinfo is not None
        assert limiter.last_invoke_time >= before
        assert limiter.time_since_last_invoke is not None


# =============================================================================
# Concurrency
# =============================================================================


class TestRateLimiterConcurrency:
    """Tests for the minimum gap between sends across threads."""

    def test_concurrent_callers_are_spaced_by_min_interval(self):
        limiter = RateLimiter(requests_per_second=20)  # 51ms
        send_times: list[float] = []
        lock = threading.Lock()
        barrier = threading.Barrier(6)

        def worker():
            barrier.wait()
            limiter.wait()
            with lock:
                send_times.append(time.monotonic())

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        send_times.sort()
        gaps = [b - a for a, b in zip(send_times, send_times[1:])]
        assert len(send_times) == 6
        # Tolerance covers scheduling noise between waking up and appending
        assert all(gap >= 0.025 for gap in gaps), gaps
        assert send_times[-1] - send_times[0] >= 5 * 0.051 - 0.03


class TestRateLimiterAsync:
    """Tests for RateLimiter.wait_async()."""

    def test_wait_async_is_spaced_like_wait(self):
        limiter = RateLimiter(requests_per_second=20)  # 51ms

        async def run():
            start = time.monotonic()
            await limiter.wait_async()
            await limiter.wait_async()
            await limiter.wait_async()
            return time.monotonic() - start

        elapsed = asyncio.run(run())

        assert elapsed >= 2 * 0.051 - 0.005

    def test_wait_async_first_call_returns_immediately(self):
        limiter = RateLimiter(requests_per_second=1)

        async def run():
            start = time.monotonic()
            await limiter.wait_async()
            return time.monotonic() - start

        assert asyncio.run(run()) < 0.5
