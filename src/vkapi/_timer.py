"""
Token expiry timer.

ExpiryTimer is a single-shot, restartable deferred callback. It notifies a
callback once the validity window of the session token elapses, so the
application can refresh the token before calls start failing.
"""

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ExpiryTimer:
    """
    Single-shot, restartable timer for token expiry notification.

    Each `arm()` cancels the previous timer and schedules a new one; each
    armed timer fires at most once. A timer that was replaced or disarmed
    while its thread was already waking up never calls back, since every arm
    gets its own generation number.

    Example:
        >>> timer = ExpiryTimer(on_expire=lambda: print("token expired"))
        >>> timer.arm(3600)  # notify in one hour
        >>> timer.arm(0)     # never notify (token without expiry)
        >>> timer.disarm()

    Args:
        on_expire: Callback invoked from the timer thread when the delay elapses.
    """

    def __init__(self, on_expire: Callable[[], None]):
        assert on_expire is not None, "on_expire callback cannot be None."

        self._on_expire = on_expire
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def arm(self, delay: float) -> None:
        """
        Cancel any armed timer and schedule a notification after `delay` seconds.

        Args:
            delay: Seconds until notification. A non-positive delay means
                "never fire" (the token has no expiry).
        """
        with self._lock:
            self._cancel_locked()
            self._generation += 1
            if delay <= 0:
                logger.debug("ExpiryTimer | Token never expires; timer not armed")
                return

            generation = self._generation
            timer = threading.Timer(delay, self._fire, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.debug(f"ExpiryTimer | Armed for {delay:.0f}s")

    def disarm(self) -> None:
        """Cancel the pending notification. Safe to call when nothing is armed."""
        with self._lock:
            self._generation += 1
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            # Release before notifying, so a callback may re-arm the timer
            self._timer = None

        try:
            self._on_expire()
        except Exception as e:
            logger.error(
                f"ExpiryTimer | ❌ Expiry callback failed: {e}",
                exc_info=logger.isEnabledFor(logging.DEBUG)
            )
