"""
Circuit breaker guarding one remote dependency.

States:
    CLOSED     Normal operation. failure_threshold consecutive failures open it.
    OPEN       Calls are rejected without being invoked until open_timeout
               has elapsed; the next call then moves it to HALF_OPEN.
    HALF_OPEN  One trial call at a time is admitted. success_threshold
               consecutive successes close the circuit; any failure reopens it.

State is process-local and in memory. Each guarded dependency owns one
instance; reset() returns it to CLOSED.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from playlist_sync.core.config import CircuitBreakerConfig
from playlist_sync.core.logger import get_logger


logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of a breaker, for logging and tests."""
    name: str
    state: CircuitState
    consecutive_failures: int
    consecutive_successes: int
    next_attempt_at: float | None
    retry_in: float


class CircuitBreaker:
    """
    Args:
        config: Thresholds and open timeout (seconds).
        clock: Monotonic time source in seconds; injectable for tests.
        name: Dependency name used in logs and CircuitOpenError.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "remote"
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._next_attempt_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    def allow_request(self) -> bool:
        """
        Decide whether a call may proceed.

        Moves OPEN to HALF_OPEN once the timeout has elapsed. In HALF_OPEN
        only one trial call is admitted until its outcome is recorded.
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True

            if self._state is CircuitState.OPEN:
                if self._clock() < self._next_attempt_at:
                    return False
                self._state = CircuitState.HALF_OPEN
                self._successes = 0
                logger.info(f"Circuit '{self.name}' transitioning to HALF_OPEN")

            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False

            if self._state is CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.config.success_threshold:
                    self._close()

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False

            if self._state is CircuitState.HALF_OPEN:
                self._successes = 0
                self._open()
                logger.warning(f"Circuit '{self.name}' reopened after failure in HALF_OPEN state")
                return

            if self._state is CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
                self._open()
                logger.error(
                    f"Circuit '{self.name}' opened after {self._failures} consecutive failures "
                    f"(threshold {self.config.failure_threshold})"
                )

    def release(self) -> None:
        """Free a half-open trial slot without counting an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._successes = 0
            self._next_attempt_at = None
            self._trial_in_flight = False

    def retry_in(self) -> float:
        """Seconds until an OPEN circuit admits a trial call (0 otherwise)."""
        if self._state is not CircuitState.OPEN or self._next_attempt_at is None:
            return 0.0
        return max(self._next_attempt_at - self._clock(), 0.0)

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(
                name=self.name,
                state=self._state,
                consecutive_failures=self._failures,
                consecutive_successes=self._successes,
                next_attempt_at=self._next_attempt_at,
                retry_in=self.retry_in(),
            )

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_at = self._clock() + self.config.open_timeout

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._successes = 0
        self._next_attempt_at = None
        logger.info(f"Circuit '{self.name}' closed after successful recovery")
