"""
Shared fixtures and fakes for the scan layer tests.

No network, no real sleeping: clocks are advanced by hand and the
extraction service is replaced by a scripted fake.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from hwsentry.models import ScanResult, VendorResult, VendorTarget
from hwsentry.services.analytics import AnalyticsRecorder
from hwsentry.services.cache import ScanCache
from hwsentry.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from hwsentry.services.errors import StoreUnavailableError
from hwsentry.services.kv_store import KeyValueStore, MemoryKeyValueStore
from hwsentry.services.lock import DistributedLock
from hwsentry.services.orchestrator import ScanOrchestrator
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter
from hwsentry.services.retry import RetryPolicy


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic-style clock in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Wall clock returning timezone-aware datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Store and extractor fakes
# ---------------------------------------------------------------------------


class FailingStore(KeyValueStore):
    """Store whose every operation fails as if the backend were unreachable."""

    def __init__(self) -> None:
        self.calls = 0

    async def _fail(self, *args: Any, **kwargs: Any) -> Any:
        self.calls += 1
        raise StoreUnavailableError("store unreachable")

    get = _fail
    set = _fail
    set_if_absent = _fail
    delete = _fail
    delete_if_equals = _fail
    ttl = _fail
    incr = _fail
    zadd = _fail
    zincrby = _fail
    zrange = _fail
    zremrangebyrank = _fail
    lpush = _fail
    lrange = _fail
    ltrim = _fail
    execute_batch = _fail
    purge_expired = _fail
    ping = _fail


class FakeExtractor:
    """
    Scripted extraction service.

    ``script`` maps vendor name to an outcome or a list of outcomes consumed
    one per call (the last one repeats). An outcome is a VendorResult, an
    exception instance to raise, or a price to report.
    """

    def __init__(
        self,
        script: dict[str, Any] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.script = script or {}
        self.gate = gate
        self.calls: dict[str, int] = {}

    async def extract(self, target: VendorTarget) -> VendorResult:
        self.calls[target.name] = self.calls.get(target.name, 0) + 1
        if self.gate is not None:
            await self.gate.wait()

        outcome = self.script.get(target.name, 100.0)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]

        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, VendorResult):
            return outcome
        return VendorResult(
            name=target.name,
            url=target.url,
            price=outcome,
            currency="GBP",
            in_stock=True,
            stock_level="In stock",
        )

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


VENDORS = ["Scan", "Overclockers", "Ebuyer", "Currys"]


def make_targets(names: list[str] | None = None) -> list[VendorTarget]:
    return [
        VendorTarget(name=name, url=f"https://{name.lower()}.example/rtx-4090")
        for name in (names or VENDORS)
    ]


def make_result(
    sku: str = "RTX-4090",
    prices: dict[str, float | None] | None = None,
    scanned_at: datetime | None = None,
    in_stock: bool = True,
) -> ScanResult:
    prices = prices if prices is not None else {"Scan": 100.0}
    return ScanResult(
        sku=sku,
        scanned_at=scanned_at or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        vendors=[
            VendorResult(
                name=name,
                url=f"https://{name.lower()}.example/{sku.lower()}",
                price=price,
                currency="GBP",
                in_stock=in_stock,
                stock_level="In stock" if in_stock else "Out of stock",
            )
            for name, price in prices.items()
        ],
    )


@dataclass
class Harness:
    """Orchestrator plus the collaborators tests want to poke at."""

    orchestrator: ScanOrchestrator
    extractor: FakeExtractor
    store: KeyValueStore
    cache: ScanCache
    lock: DistributedLock
    breaker: CircuitBreaker
    limiter: SlidingWindowRateLimiter
    analytics: AnalyticsRecorder
    clock: FakeDateClock
    sleep: RecordingSleep


def build_harness(
    extractor: FakeExtractor | None = None,
    store: KeyValueStore | None = None,
    catalog: dict[str, list[VendorTarget]] | None = None,
    max_requests: int = 100,
    failure_threshold: int = 3,
    analytics_store: KeyValueStore | None = None,
) -> Harness:
    clock = FakeDateClock()
    store = store or MemoryKeyValueStore()
    extractor = extractor or FakeExtractor()
    cache = ScanCache(store, clock=clock)
    lock = DistributedLock(store)
    breaker = CircuitBreaker(
        "extraction",
        CircuitBreakerConfig(failure_threshold=failure_threshold),
        clock=clock,
    )
    limiter = SlidingWindowRateLimiter(max_requests=max_requests, window=60)
    analytics = AnalyticsRecorder(analytics_store or store)
    sleep = RecordingSleep()
    orchestrator = ScanOrchestrator(
        catalog=catalog or {"RTX-4090": make_targets()},
        extractor=extractor,
        cache=cache,
        lock=lock,
        breaker=breaker,
        rate_limiter=limiter,
        analytics=analytics,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=8.0),
        sleep=sleep,
        clock=clock,
    )
    return Harness(
        orchestrator=orchestrator,
        extractor=extractor,
        store=store,
        cache=cache,
        lock=lock,
        breaker=breaker,
        limiter=limiter,
        analytics=analytics,
        clock=clock,
        sleep=sleep,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def date_clock() -> FakeDateClock:
    return FakeDateClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryKeyValueStore:
    return MemoryKeyValueStore(clock=clock)
