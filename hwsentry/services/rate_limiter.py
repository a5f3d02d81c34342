"""
Per-client sliding-window rate limiter.
"""

import threading
import time
from collections import deque
from typing import Callable

from loguru import logger

from hwsentry.services.errors import RateLimitError


class SlidingWindowRateLimiter:
    """
    Admits at most ``max_requests`` per client within any trailing ``window``.

    Each client keeps a deque of admission timestamps. Timestamps older than
    the window are dropped before every decision; one exactly ``window`` old
    still counts. Clients whose deque ends up empty are removed by
    ``sweep()`` so idle clients hold no state.

    Usage:
        limiter = SlidingWindowRateLimiter(max_requests=5, window=60)
        limiter.check(client_ip)  # raises RateLimitError when over the limit
    """

    def __init__(
        self,
        *,
        max_requests: int = 5,
        window: float = 60.0,
        sweep_every: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._sweep_every = max(1, sweep_every)
        self._clock = clock
        self._history: dict[str, deque[float]] = {}
        self._checks_since_sweep = 0
        self._lock = threading.Lock()

    def is_allowed(self, client_id: str) -> bool:
        """Record and admit the request if the client is under its limit."""
        with self._lock:
            now = self._clock()
            history = self._history.setdefault(client_id, deque())
            self._prune(history, now)

            allowed = len(history) < self.max_requests
            if allowed:
                history.append(now)
            elif not history:
                del self._history[client_id]

            self._checks_since_sweep += 1
            if self._checks_since_sweep >= self._sweep_every:
                self._sweep_locked(now)

        if not allowed:
            logger.info(f"Rate limit hit for client {client_id}")
        return allowed

    def check(self, client_id: str) -> None:
        """
        Admit the request or raise.

        Raises:
            RateLimitError: With ``retry_after`` set to the seconds until the
                oldest request in the window expires
        """
        if not self.is_allowed(client_id):
            raise RateLimitError(client_id, retry_after=self.retry_after(client_id))

    def retry_after(self, client_id: str) -> float:
        """Seconds until the client may be admitted again (0 if now)."""
        with self._lock:
            history = self._history.get(client_id)
            if not history:
                return 0.0
            now = self._clock()
            self._prune(history, now)
            if len(history) < self.max_requests:
                return 0.0
            return max(0.0, history[0] + self.window - now)

    def remaining(self, client_id: str) -> int:
        """Requests the client can still make in the current window."""
        with self._lock:
            history = self._history.get(client_id)
            if not history:
                return self.max_requests
            self._prune(history, self._clock())
            return max(0, self.max_requests - len(history))

    def sweep(self) -> int:
        """Remove clients with no requests inside the window. Returns count removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def tracked_clients(self) -> int:
        return len(self._history)

    def _prune(self, history: deque[float], now: float) -> None:
        cutoff = now - self.window
        while history and history[0] < cutoff:
            history.popleft()

    def _sweep_locked(self, now: float) -> int:
        self._checks_since_sweep = 0
        idle = []
        for client_id, history in self._history.items():
            self._prune(history, now)
            if not history:
                idle.append(client_id)
        for client_id in idle:
            del self._history[client_id]
        if idle:
            logger.debug(f"Rate limiter swept {len(idle)} idle clients")
        return len(idle)
