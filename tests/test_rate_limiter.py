"""
tests/test_rate_limiter.py

Sliding-window admission: boundary at max_requests, window expiry, per
client isolation, and reclaiming idle clients.
"""

from __future__ import annotations

import pytest

from conftest import FakeClock
from hwsentry.services.errors import RateLimitError
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter


@pytest.fixture()
def limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_requests=5, window=60, clock=clock)


class TestBoundary:
    def test_admits_exactly_max_requests(self, limiter, clock) -> None:
        results = []
        for _ in range(6):
            results.append(limiter.is_allowed("10.0.0.1"))
            clock.advance(1)
        assert results == [True, True, True, True, True, False]

    def test_admits_again_once_first_request_leaves_window(
        self, limiter, clock
    ) -> None:
        for _ in range(5):
            assert limiter.is_allowed("10.0.0.1")
        assert not limiter.is_allowed("10.0.0.1")

        clock.advance(60.5)

        assert limiter.is_allowed("10.0.0.1")

    def test_request_exactly_window_old_still_counts(self, limiter, clock) -> None:
        for _ in range(5):
            assert limiter.is_allowed("10.0.0.1")

        clock.advance(60)
        assert not limiter.is_allowed("10.0.0.1")

        clock.advance(0.001)
        assert limiter.is_allowed("10.0.0.1")

    def test_window_slides_rather_than_resetting(self, limiter, clock) -> None:
        limiter.is_allowed("c")  # t=0
        clock.advance(30)
        for _ in range(4):
            assert limiter.is_allowed("c")  # t=30
        clock.advance(31)  # first request expired, four remain
        assert limiter.is_allowed("c")
        assert not limiter.is_allowed("c")

    def test_rejected_requests_do_not_consume_budget(self, limiter, clock) -> None:
        for _ in range(5):
            limiter.is_allowed("c")
        for _ in range(10):
            assert not limiter.is_allowed("c")
        clock.advance(61)
        assert limiter.remaining("c") == 5


class TestClients:
    def test_clients_are_isolated(self, limiter) -> None:
        for _ in range(5):
            limiter.is_allowed("a")
        assert not limiter.is_allowed("a")
        assert limiter.is_allowed("b")

    def test_check_raises_with_retry_after(self, limiter, clock) -> None:
        for _ in range(5):
            limiter.check("a")
        clock.advance(10)

        with pytest.raises(RateLimitError) as exc_info:
            limiter.check("a")

        assert exc_info.value.client_id == "a"
        assert exc_info.value.retry_after == pytest.approx(50.0)


class TestMemory:
    def test_sweep_removes_idle_clients(self, limiter, clock) -> None:
        limiter.is_allowed("a")
        limiter.is_allowed("b")
        clock.advance(30)
        limiter.is_allowed("c")
        clock.advance(31)

        assert limiter.sweep() == 2
        assert limiter.tracked_clients() == 1

    def test_lazy_sweep_runs_every_n_checks(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            max_requests=5, window=60, sweep_every=3, clock=clock
        )
        limiter.is_allowed("a")
        limiter.is_allowed("b")
        clock.advance(61)

        limiter.is_allowed("c")  # third check triggers the sweep

        assert limiter.tracked_clients() == 1
