"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are blocked
- HALF_OPEN: Testing if service has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are reached
- OPEN → HALF_OPEN: On the first call after recovery_timeout expires
- HALF_OPEN → CLOSED: After success_threshold trial successes
- HALF_OPEN → OPEN: On any failed request
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from hwsentry.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 3  # Consecutive failures before opening
    recovery_timeout: timedelta = timedelta(seconds=30)  # Time before half-open
    half_open_max_calls: int = 2  # Concurrent trial calls in half-open state
    success_threshold: int = 2  # Successes needed to close from half-open


class CircuitBreaker:
    """
    Circuit breaker for a single upstream service.

    One instance is shared by every in-flight call to the service, so all
    state changes happen under a lock and never span an await.

    Usage:
        cb = CircuitBreaker("extraction")
        result = await cb.call(lambda: fetch(url))
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._half_open_in_flight = 0
        self._half_open_generation = 0

        self._total_calls = 0
        self._total_failures = 0
        self._total_rejections = 0

        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state. Reading it never causes a transition."""
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def consecutive_successes(self) -> int:
        return self._consecutive_successes

    def can_request(self) -> bool:
        """Check whether a call would be admitted right now, without side effects."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return self._recovery_elapsed()
            return self._half_open_in_flight < self.config.half_open_max_calls

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Whatever ``operation`` raises, after recording the failure
        """
        trial_generation = self._admit()

        try:
            result = await operation()
        except Exception:
            self._record_failure()
            raise
        else:
            self._record_success(trial_generation)
            return result
        finally:
            if trial_generation is not None:
                self._release_trial(trial_generation)

    def _admit(self) -> int | None:
        """
        Admit or reject a call.

        Returns the half-open generation for trial calls, None otherwise.
        """
        with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._recovery_elapsed():
                    self._total_rejections += 1
                    raise CircuitOpenError(
                        self.service_id, self._time_until_reset() or 0
                    )
                self._half_open()

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_max_calls:
                    self._total_rejections += 1
                    raise CircuitOpenError(self.service_id, 0)
                self._half_open_in_flight += 1
                self._total_calls += 1
                return self._half_open_generation

            self._total_calls += 1
            return None

    def _record_success(self, trial_generation: int | None) -> None:
        """Record a successful request."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                if trial_generation != self._half_open_generation:
                    return
                self._consecutive_successes += 1
                if self._consecutive_successes >= self.config.success_threshold:
                    self._close()
            elif self._state == CircuitState.CLOSED:
                # Reset failure count on success
                self._consecutive_failures = 0

    def _record_failure(self) -> None:
        """Record a failed request."""
        with self._lock:
            self._total_failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open reopens the circuit
                self._consecutive_failures += 1
                self._open()
            elif self._state == CircuitState.CLOSED:
                self._consecutive_failures += 1
                if self._consecutive_failures >= self.config.failure_threshold:
                    self._open()

    def _release_trial(self, generation: int) -> None:
        with self._lock:
            if generation == self._half_open_generation and self._half_open_in_flight:
                self._half_open_in_flight -= 1

    def _recovery_elapsed(self) -> bool:
        return (
            self._opened_at is not None
            and self._clock() - self._opened_at >= self.config.recovery_timeout
        )

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._consecutive_successes = 0
        self._half_open_in_flight = 0
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after "
            f"{self._consecutive_failures} consecutive failures"
        )

    def _half_open(self) -> None:
        """Transition to HALF_OPEN state."""
        self._state = CircuitState.HALF_OPEN
        self._consecutive_successes = 0
        self._half_open_in_flight = 0
        self._half_open_generation += 1
        logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._opened_at = None
        self._half_open_in_flight = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._consecutive_successes = 0
            self._opened_at = None
            self._half_open_in_flight = 0
            self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def _time_until_reset(self) -> float | None:
        if self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self.config.recovery_timeout
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0.0, remaining)

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the circuit admits a trial call."""
        with self._lock:
            return self._time_until_reset()

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        with self._lock:
            return {
                "service_id": self.service_id,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "consecutive_successes": self._consecutive_successes,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "total_rejections": self._total_rejections,
                "last_failure": (
                    self._last_failure_time.isoformat()
                    if self._last_failure_time
                    else None
                ),
                "opened_at": (
                    self._opened_at.isoformat() if self._opened_at else None
                ),
                "time_until_reset": self._time_until_reset(),
            }
