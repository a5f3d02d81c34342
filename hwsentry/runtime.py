"""
ScanRuntime - owns the process-wide resilience objects.

The breaker, rate limiter and store only protect anything if there is one of
each per process, so they are built here once and handed to the API.
"""

from datetime import timedelta
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from hwsentry.models import VendorTarget
from hwsentry.scheduler import MaintenanceScheduler
from hwsentry.services.analytics import AnalyticsRecorder
from hwsentry.services.cache import ScanCache
from hwsentry.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from hwsentry.services.errors import StoreUnavailableError
from hwsentry.services.extraction import ExtractionClient, Extractor
from hwsentry.services.kv_store import KeyValueStore, MemoryKeyValueStore
from hwsentry.services.lock import DistributedLock
from hwsentry.services.orchestrator import ScanOrchestrator
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter
from hwsentry.settings import Settings, global_settings
from hwsentry.utils import utcnow

Catalog = dict[str, list[VendorTarget]]

_catalog_adapter = TypeAdapter(Catalog)


def load_catalog(path: str | Path) -> Catalog:
    """Read a JSON mapping of SKU to vendor targets. Missing file gives an empty catalog."""
    path = Path(path)
    if not path.exists():
        logger.warning(f"Catalog file {path} not found, no SKUs will be scannable")
        return {}
    try:
        return _catalog_adapter.validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise ValueError(f"Invalid catalog file {path}: {e}") from e


class ScanRuntime:
    """Container for everything a scan needs, with a start/close lifecycle."""

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        store: KeyValueStore,
        breaker: CircuitBreaker,
        rate_limiter: SlidingWindowRateLimiter,
        cache: ScanCache,
        analytics: AnalyticsRecorder,
        extractor: Extractor,
        scheduler: MaintenanceScheduler | None = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.breaker = breaker
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.analytics = analytics
        self.extractor = extractor
        self.scheduler = scheduler

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        catalog: Catalog | None = None,
        extractor: Extractor | None = None,
        store: KeyValueStore | None = None,
        with_scheduler: bool = True,
    ) -> "ScanRuntime":
        """Build the runtime once from settings."""
        settings = settings or global_settings
        if catalog is None:
            catalog = load_catalog(settings.catalog_path)
        store = store or MemoryKeyValueStore(debug=settings.cache_debug)
        extractor = extractor or ExtractionClient(
            api_key=settings.extraction_api_key,
            base_url=settings.extraction_base_url,
            timeout=settings.fetch_timeout_seconds,
        )

        breaker = CircuitBreaker(
            ExtractionClient.SERVICE_ID,
            CircuitBreakerConfig(
                failure_threshold=settings.breaker_failure_threshold,
                recovery_timeout=timedelta(seconds=settings.breaker_recovery_seconds),
                half_open_max_calls=settings.breaker_half_open_max_calls,
                success_threshold=settings.breaker_success_threshold,
            ),
        )
        rate_limiter = SlidingWindowRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window=settings.rate_limit_window_seconds,
        )
        cache = ScanCache(
            store,
            default_ttl=timedelta(seconds=settings.cache_ttl_seconds),
            fresh_window=timedelta(seconds=settings.cache_fresh_seconds),
            history_limit=settings.history_limit,
            debug=settings.cache_debug,
        )
        lock = DistributedLock(store, default_ttl=settings.effective_lock_ttl)
        analytics = AnalyticsRecorder(
            store,
            response_sample_size=settings.analytics_response_samples,
            recent_limit=settings.analytics_recent_limit,
        )
        orchestrator = ScanOrchestrator(
            catalog=catalog,
            extractor=extractor,
            cache=cache,
            lock=lock,
            breaker=breaker,
            rate_limiter=rate_limiter,
            analytics=analytics,
            retry_policy=settings.retry_policy(),
        )
        scheduler = (
            MaintenanceScheduler(
                rate_limiter, store, settings.maintenance_interval_seconds
            )
            if with_scheduler
            else None
        )

        logger.info(
            f"Scan runtime ready: {len(catalog)} SKUs, "
            f"lock TTL {settings.effective_lock_ttl:.0f}s"
        )
        return cls(
            orchestrator=orchestrator,
            store=store,
            breaker=breaker,
            rate_limiter=rate_limiter,
            cache=cache,
            analytics=analytics,
            extractor=extractor,
            scheduler=scheduler,
        )

    def start(self) -> None:
        if self.scheduler:
            self.scheduler.start()

    async def close(self) -> None:
        """Stop background work and release clients."""
        if self.scheduler:
            self.scheduler.stop()
        await self.analytics.flush()
        close = getattr(self.extractor, "close", None)
        if close is not None:
            await close()
        await self.store.close()
        logger.info("Scan runtime closed")

    async def health(self) -> dict[str, Any]:
        """Health status of the scan layer and its dependencies."""
        try:
            store_ok = await self.store.ping()
        except StoreUnavailableError as e:
            logger.warning(f"Store health check failed: {e}")
            store_ok = False

        is_configured = getattr(self.extractor, "is_configured", None)
        extraction_configured = is_configured() if is_configured else True
        breaker_status = self.breaker.get_status()

        healthy = store_ok and extraction_configured
        return {
            "status": "ok" if healthy else "degraded",
            "timestamp": utcnow().isoformat(),
            "service": "Hardware Sentry API",
            "checks": {
                "extraction": {
                    "configured": extraction_configured,
                    "status": "ready" if extraction_configured else "not_configured",
                    "circuit": breaker_status,
                },
                "store": {"status": "ready" if store_ok else "unavailable"},
                "rate_limiter": {
                    "tracked_clients": self.rate_limiter.tracked_clients()
                },
                "cache": self.cache.get_stats().to_dict(),
            },
        }
