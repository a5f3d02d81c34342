"""
tests/test_runtime.py

Settings derivation, catalog loading, the maintenance sweep, and the
runtime lifecycle.
"""

from __future__ import annotations

import json

import pytest

from conftest import FakeClock, FakeExtractor, make_targets
from hwsentry.runtime import ScanRuntime, load_catalog
from hwsentry.scheduler import MaintenanceScheduler
from hwsentry.services.kv_store import MemoryKeyValueStore
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter
from hwsentry.settings import Settings


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings.model_validate({})
        assert settings.rate_limit_max_requests == 5
        assert settings.cache_fresh_seconds == 300.0
        assert settings.retry_policy().max_attempts == 3

    def test_lock_ttl_covers_worst_case_fetch(self) -> None:
        settings = Settings.model_validate({})
        # 3 attempts x 90s timeout + 2s + 4s backoff
        assert settings.worst_case_fetch_seconds == pytest.approx(276.0)
        assert settings.effective_lock_ttl == pytest.approx(316.0)

    def test_configured_lock_ttl_wins_when_larger(self) -> None:
        settings = Settings.model_validate({"LOCK_TTL": "600"})
        assert settings.effective_lock_ttl == 600.0

    def test_short_timeouts_shrink_lock_ttl_to_floor(self) -> None:
        settings = Settings.model_validate({"FETCH_TIMEOUT": "5", "LOCK_TTL": "120"})
        assert settings.effective_lock_ttl == 120.0


class TestCatalog:
    def test_load_catalog(self, tmp_path) -> None:
        path = tmp_path / "catalog.json"
        path.write_text(
            json.dumps(
                {"RTX-4090": [{"name": "Scan", "url": "https://scan.example/4090"}]}
            )
        )

        catalog = load_catalog(path)

        assert catalog["RTX-4090"][0].name == "Scan"

    def test_missing_catalog_is_empty(self, tmp_path) -> None:
        assert load_catalog(tmp_path / "missing.json") == {}

    def test_invalid_catalog_raises(self, tmp_path) -> None:
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"RTX-4090": [{"name": "Scan"}]}))

        with pytest.raises(ValueError):
            load_catalog(path)


class TestMaintenance:
    async def test_sweep_job_reclaims_idle_state(self, clock: FakeClock) -> None:
        limiter = SlidingWindowRateLimiter(max_requests=5, window=60, clock=clock)
        store = MemoryKeyValueStore(clock=clock)
        limiter.is_allowed("10.0.0.1")
        await store.set("short", "1", ttl=10)
        await store.set("long", "1")
        clock.advance(61)

        swept = await MaintenanceScheduler(limiter, store).sweep_job()

        assert swept == {"clients": 1, "keys": 1}
        assert limiter.tracked_clients() == 0
        assert await store.get("long") == "1"

    async def test_start_and_stop(self) -> None:
        scheduler = MaintenanceScheduler(
            SlidingWindowRateLimiter(), MemoryKeyValueStore(), interval_seconds=3600
        )
        scheduler.start()
        scheduler.start()
        assert scheduler.is_running()

        scheduler.stop()
        assert not scheduler.is_running()


class TestRuntime:
    async def test_health_degraded_without_api_key(self) -> None:
        runtime = ScanRuntime.from_settings(
            Settings.model_validate({"EXTRACTION_API_KEY": ""}),
            catalog={"RTX-4090": make_targets()},
            with_scheduler=False,
        )

        health = await runtime.health()
        await runtime.close()

        assert health["status"] == "degraded"
        assert health["checks"]["extraction"]["status"] == "not_configured"

    async def test_lifecycle_with_scheduler(self) -> None:
        runtime = ScanRuntime.from_settings(
            Settings.model_validate({}),
            catalog={"RTX-4090": make_targets()},
            extractor=FakeExtractor(),
        )

        runtime.start()
        assert runtime.scheduler.is_running()
        await runtime.close()

        assert not runtime.scheduler.is_running()
        assert runtime.orchestrator.skus == ["RTX-4090"]
