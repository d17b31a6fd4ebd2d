"""
Rate Limiter
Shared permit pool that every catalog call must acquire first
"""

import threading
import time
import logging
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Non-blocking permit pool with a minimum gap between calls

    One instance is shared by all concurrent lookups against the same
    external service. It is passed in explicitly; there is no module-level
    instance.
    """

    def __init__(self, min_interval: float = 1.2, max_concurrent: int = 1,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            min_interval: Minimum seconds between the start of two calls
            max_concurrent: Calls allowed in flight at the same time
            clock: Time source (injectable for tests)
        """
        self.min_interval = max(0.0, float(min_interval))
        self.max_concurrent = max(1, int(max_concurrent))
        self.clock = clock
        self._permits = threading.BoundedSemaphore(self.max_concurrent)
        self._lock = threading.Lock()
        self._next_allowed_at = 0.0
        self._in_flight = 0
        self.stats = {
            'granted': 0,
            'denied': 0,
        }

    def try_acquire(self) -> float:
        """
        Try to take a permit without blocking

        Returns:
            0.0 if a permit was granted (caller must release() it),
            otherwise the number of seconds to wait before trying again
        """
        with self._lock:
            now = self.clock()
            wait = self._next_allowed_at - now
            if wait > 0:
                self.stats['denied'] += 1
                return wait

            if not self._permits.acquire(blocking=False):
                self.stats['denied'] += 1
                # Busy: try again after one gap
                return self.min_interval or 0.05

            self._next_allowed_at = now + self.min_interval
            self._in_flight += 1
            self.stats['granted'] += 1
            return 0.0

    def release(self) -> None:
        """Return a permit and restart the gap from the end of the call"""
        with self._lock:
            self._next_allowed_at = max(self._next_allowed_at, self.clock() + self.min_interval)
            self._in_flight -= 1
            self._permits.release()

    def acquire(self, sleep: Callable[[float], None] = time.sleep) -> float:
        """
        Take a permit, sleeping the calling thread until one is available

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            wait = self.try_acquire()
            if wait <= 0:
                return waited
            logger.debug(f"Rate limiter busy, waiting {wait:.2f}s")
            sleep(wait)
            waited += wait

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                'min_interval': self.min_interval,
                'max_concurrent': self.max_concurrent,
                'in_flight': self._in_flight,
                'granted': self.stats['granted'],
                'denied': self.stats['denied'],
            }
