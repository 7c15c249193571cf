"""
Minimum-interval rate limiter for the extraction service.

One shared cursor records when the last call went out; wait() sleeps off
whatever remains of the interval before letting the next call through.
"""

import threading
import time
from typing import Callable, Optional

from .logger import get_module_logger

logger = get_module_logger("rate_limiter")

# GitHub Models free tier: 15 requests per minute
DEFAULT_MIN_INTERVAL = 4.0


class RateLimiter:
    """Serializes calls so that at least min_interval seconds separate them."""

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """
        Block until the next call is allowed, then claim the slot.

        The lock is held while sleeping, so concurrent callers queue up
        behind each other instead of racing past the interval.

        Returns:
            Seconds slept
        """
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    logger.debug(f"Rate limit: sleeping {remaining:.2f}s")
                    self._sleep(remaining)
                    waited = remaining
            self._last_call = self._clock()
            return waited
