"""Circuit breaker guarding the tenant cache backend.

While Redis is healthy every lookup goes through it. After
``failure_threshold`` consecutive failures the breaker opens and the cache is
skipped entirely (lookups fall straight through to the database) for
``recovery_seconds``. The first call after that window is a half-open probe:
success closes the breaker, failure re-opens it for another window.

Thread-safe: directory lookups run in the threadpool.
"""

import threading
import time
from enum import Enum
from typing import Callable, Optional


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Args:
        name: Label used in logs and metrics
        failure_threshold: Consecutive failures that open the breaker
        recovery_seconds: Time the breaker stays open before a probe is allowed
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_seconds: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_seconds = recovery_seconds
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    def allow_request(self) -> bool:
        """Return True if the protected backend may be called now."""
        with self._lock:
            if self._state == BreakerState.CLOSED:
                return True
            if self._state == BreakerState.OPEN:
                if self._clock() - self._opened_at < self.recovery_seconds:
                    return False
                self._state = BreakerState.HALF_OPEN
                self._probe_in_flight = False
            # Half-open: exactly one probe at a time
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._state = BreakerState.CLOSED
            self._consecutive_failures = 0
            self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._probe_in_flight = False
            if self._state == BreakerState.HALF_OPEN:
                self._open()
                return
            self._consecutive_failures += 1
            if self._consecutive_failures >= self.failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
        self._consecutive_failures = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == BreakerState.OPEN
