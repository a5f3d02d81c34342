"""
tests/test_cache.py

ScanCache: latest result round trip, freshness purity, TTL, bounded
history, and degradation when the store is down.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FailingStore, FakeDateClock, make_result
from hwsentry.services.cache import ScanCache


@pytest.fixture()
def cache(store, date_clock: FakeDateClock) -> ScanCache:
    return ScanCache(store, clock=date_clock)


class TestLatest:
    async def test_miss_returns_none(self, cache) -> None:
        assert await cache.get("RTX-4090") is None

    async def test_set_then_get(self, cache) -> None:
        result = make_result(prices={"Scan": 1599.99, "Ebuyer": None})

        assert await cache.set("RTX-4090", result)
        stored = await cache.get("RTX-4090")

        assert stored == result
        assert stored.vendors[1].price is None

    async def test_served_flags_are_not_persisted(self, cache) -> None:
        result = make_result().model_copy(update={"stale": True})
        await cache.set("RTX-4090", result)
        stored = await cache.get("RTX-4090")
        assert stored.stale is False
        assert stored.cached is False

    async def test_entry_disappears_after_ttl(self, cache, store, clock) -> None:
        await cache.set("RTX-4090", make_result(), ttl=timedelta(hours=1))
        clock.advance(3600)
        assert await cache.get("RTX-4090") is None

    async def test_undecodable_entry_is_a_miss(self, cache, store) -> None:
        await store.set(cache.latest_key("RTX-4090"), "{not json")
        assert await cache.get("RTX-4090") is None
        assert cache.get_stats().errors == 1


class TestFreshness:
    def test_fresh_at_write_time(self, cache, date_clock) -> None:
        result = make_result(scanned_at=date_clock())
        assert cache.is_fresh(result)

    def test_stale_after_window(self, cache, date_clock) -> None:
        result = make_result(scanned_at=date_clock())
        date_clock.advance(5 * 60 + 1)
        assert not cache.is_fresh(result)

    def test_is_pure_for_a_fixed_instant(self, cache, date_clock) -> None:
        result = make_result(scanned_at=date_clock())
        now = date_clock.now + timedelta(minutes=4)
        first = cache.is_fresh(result, timedelta(minutes=5), now=now)
        second = cache.is_fresh(result, timedelta(minutes=5), now=now)
        assert first is second is True

    def test_custom_window(self, cache, date_clock) -> None:
        result = make_result(scanned_at=date_clock())
        date_clock.advance(90)
        assert not cache.is_fresh(result, timedelta(minutes=1))
        assert cache.is_fresh(result, timedelta(minutes=2))


class TestHistory:
    async def test_keeps_only_latest_ten_newest_first(self, cache, date_clock) -> None:
        for i in range(12):
            await cache.append_history(
                "RTX-4090",
                make_result(prices={"Scan": 100.0 + i}, scanned_at=date_clock()),
            )
            date_clock.advance(60)

        history = await cache.get_history("RTX-4090")

        assert len(history) == 10
        assert [h.vendors[0].price for h in history] == [
            100.0 + i for i in range(11, 1, -1)
        ]

    async def test_limit(self, cache, date_clock) -> None:
        for i in range(3):
            await cache.append_history("RTX-4090", make_result(scanned_at=date_clock()))
            date_clock.advance(60)
        assert len(await cache.get_history("RTX-4090", limit=2)) == 2

    @pytest.mark.parametrize("limit", [0, -2])
    async def test_non_positive_limit_returns_nothing(
        self, cache, date_clock, limit
    ) -> None:
        for i in range(5):
            await cache.append_history("RTX-4090", make_result(scanned_at=date_clock()))
            date_clock.advance(60)

        assert await cache.get_history("RTX-4090", limit=limit) == []

    async def test_history_is_per_sku(self, cache) -> None:
        await cache.append_history("RTX-4090", make_result())
        assert await cache.get_history("RX-7900") == []


class TestStoreDown:
    async def test_reads_miss_and_writes_are_skipped(self, date_clock) -> None:
        cache = ScanCache(FailingStore(), clock=date_clock)

        assert await cache.get("RTX-4090") is None
        assert await cache.set("RTX-4090", make_result()) is False
        assert await cache.append_history("RTX-4090", make_result()) is False
        assert await cache.get_history("RTX-4090") == []
