"""
Client-side rate limiting for the vkapi SDK.

VK limits how many method calls a single token may issue per second. The
RateLimiter enforces a minimum interval between consecutive calls of one
client instance:

    min_interval_ms = floor(1000 / requests_per_second) + 1

The extra millisecond rounds the interval up, so the enforced rate never
exceeds the configured one even with coarse timer granularity. A rate of 0
disables throttling.

Example:
    >>> from vkapi._rate_limit import RateLimiter
    >>> limiter = RateLimiter(requests_per_second=3)
    >>> limiter.min_interval_ms
    334
    >>> limiter.wait()  # returns immediately on the first call
    >>> limiter.wait()  # sleeps ~334ms
"""

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from vkapi._errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


def min_interval_ms_for(requests_per_second: float) -> int:
    """
    Return the minimum interval in milliseconds for a given rate.

    Raises:
        InvalidConfigurationError: If the rate is negative.
    """
    if requests_per_second < 0:
        raise InvalidConfigurationError(
            "requests_per_second", requests_per_second,
            "Must be >= 0 (0 disables throttling).",
        )
    if requests_per_second == 0:
        return 0
    return math.floor(1000 / requests_per_second) + 1


class RateLimiter:
    """
    Minimum-interval rate limiter shared by all callers of one client.

    The check of the last invocation time and its update happen atomically
    under a single lock: each caller reserves the next free send slot and
    then sleeps outside the lock until that slot arrives. Two concurrent
    callers can therefore never observe the same stale timestamp, and no
    caller is blocked by another caller's sleep or network I/O.

    This limiter is thread-safe; `wait_async()` honours the same reservations
    from coroutines without blocking the event loop.

    Args:
        requests_per_second: Maximum calls per second (0 disables throttling).
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Blocking sleep function (injectable for tests).

    Raises:
        InvalidConfigurationError: If requests_per_second is negative.
    """

    def __init__(
        self,
        requests_per_second: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        assert clock is not None, "clock cannot be None."
        assert sleep is not None, "sleep cannot be None."

        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

        self._requests_per_second = 0.0
        self._min_interval_ms = 0
        self._last_invoke: float | None = None
        self._last_invoke_time: datetime | None = None

        self.requests_per_second = requests_per_second

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def requests_per_second(self) -> float:
        return self._requests_per_second

    @requests_per_second.setter
    def requests_per_second(self, value: float) -> None:
        # Validated before any state change
        min_interval_ms = min_interval_ms_for(value)
        with self._lock:
            self._requests_per_second = float(value)
            self._min_interval_ms = min_interval_ms
        logger.debug(
            f"RateLimiter | Rate set to {value} req/s (min interval: {min_interval_ms}ms)"
        )

    @property
    def min_interval_ms(self) -> int:
        return self._min_interval_ms

    # -------------------------------------------------------------------------
    # Observables
    # -------------------------------------------------------------------------

    @property
    def last_invoke_time(self) -> datetime | None:
        """When the last call was (or is scheduled to be) sent, in UTC."""
        return self._last_invoke_time

    @property
    def time_since_last_invoke(self) -> timedelta | None:
        """Elapsed time since the last call, or None if nothing was sent yet."""
        last = self._last_invoke_time
        if last is None:
            return None
        return datetime.now(UTC) - last

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    def reserve(self) -> float:
        """
        Reserve the next send slot and return how long to wait for it.

        Records the slot as the last invocation time before returning, so the
        caller must send right after waiting the returned delay.

        Returns:
            Seconds to wait (0.0 when no throttling is needed).
        """
        with self._lock:
            now = self._clock()
            delay = 0.0
            if self._min_interval_ms > 0 and self._last_invoke is not None:
                elapsed_ms = (now - self._last_invoke) * 1000
                if elapsed_ms < self._min_interval_ms:
                    delay = (self._min_interval_ms - elapsed_ms) / 1000

            self._last_invoke = now + delay
            self._last_invoke_time = datetime.now(UTC) + timedelta(seconds=delay)
            return delay

    def wait(self) -> None:
        """Block the calling thread until the next call is allowed, then record it."""
        delay = self.reserve()
        if delay > 0:
            logger.debug(f"RateLimiter | Throttling call for {delay * 1000:.0f}ms")
            self._sleep(delay)

    async def wait_async(self) -> None:
        """Suspend the calling coroutine until the next call is allowed, then record it."""
        delay = self.reserve()
        if delay > 0:
            logger.debug(f"RateLimiter | Throttling call for {delay * 1000:.0f}ms")
            await asyncio.sleep(delay)

    def mark(self) -> None:
        """Record 'now' as the last invocation without waiting."""
        with self._lock:
            now = self._clock()
            if self._last_invoke is not None and self._last_invoke > now:
                # A reserved slot lies ahead; keep it
                return
            self._last_invoke = now
            self._last_invoke_time = datetime.now(UTC)
