"""
ScanOrchestrator - one request/response cycle for a SKU scan.

Sequence:
1. Rate limit the client
2. Validate the SKU against the catalog
3. Serve a fresh cache entry if there is one
4. Take the per-SKU lock, or fall back to stale cache
5. Fan out to every vendor through CircuitBreaker(Retry(extract))
6. Keep partial results, fall back to stale cache if nothing succeeded
7. Annotate changes, write through to the cache and history
8. Record analytics without waiting, release the lock
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Mapping, Sequence

from loguru import logger

from hwsentry.models import (
    AnalyticsEvent,
    ScanResult,
    VendorError,
    VendorResult,
    VendorTarget,
)
from hwsentry.services.analytics import AnalyticsRecorder
from hwsentry.services.cache import ScanCache
from hwsentry.services.change_detector import detect_changes
from hwsentry.services.circuit_breaker import CircuitBreaker
from hwsentry.services.errors import (
    InProgressNoDataError,
    InvalidSkuError,
    LockContentionError,
    ServiceError,
    UpstreamUnavailableError,
)
from hwsentry.services.extraction import Extractor
from hwsentry.services.lock import DistributedLock
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter
from hwsentry.services.retry import RetryPolicy, with_retry
from hwsentry.utils import epoch_ms, utcnow


def _error_kind(error: Exception) -> str:
    if isinstance(error, ServiceError):
        return getattr(error, "kind", "unknown")
    return "unknown"


class ScanOrchestrator:
    """
    Coordinates cache, lock, breaker, retries and analytics for SKU scans.

    Usage:
        orchestrator = ScanOrchestrator(catalog, extractor, cache, lock,
                                        breaker, rate_limiter, analytics)
        result = await orchestrator.scan("RTX-4090", client_id=request_ip)
    """

    def __init__(
        self,
        catalog: Mapping[str, Sequence[VendorTarget]],
        extractor: Extractor,
        cache: ScanCache,
        lock: DistributedLock,
        breaker: CircuitBreaker,
        rate_limiter: SlidingWindowRateLimiter,
        analytics: AnalyticsRecorder,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._catalog = {sku: list(targets) for sku, targets in catalog.items()}
        self._extractor = extractor
        self._cache = cache
        self._lock = lock
        self._breaker = breaker
        self._rate_limiter = rate_limiter
        self._analytics = analytics
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    @property
    def skus(self) -> list[str]:
        return list(self._catalog)

    def get_targets(self, sku: str) -> list[VendorTarget]:
        """Vendor targets for a SKU, in configuration order."""
        targets = self._catalog.get(sku)
        if not targets:
            raise InvalidSkuError(sku)
        return targets

    async def scan(self, sku: str, client_id: str = "anonymous") -> ScanResult:
        """
        Scan a SKU.

        Raises:
            RateLimitError: Client is over its request budget
            InvalidSkuError: SKU is not in the catalog
            InProgressNoDataError: Another scan holds the lock, nothing cached
            UpstreamUnavailableError: Every vendor failed, nothing cached
        """
        self._rate_limiter.check(client_id)
        targets = self.get_targets(sku)
        started = time.perf_counter()

        try:
            result = await self._scan(sku, targets)
        except (InProgressNoDataError, UpstreamUnavailableError) as e:
            self._record(sku, started, success=False, cached=False, error=str(e))
            raise

        if result.stale:
            self._record(
                sku,
                started,
                success=False,
                cached=True,
                vendor_count=len(result.vendors),
                error="served stale cache",
            )
        else:
            self._record(
                sku,
                started,
                success=True,
                cached=result.cached,
                vendor_count=len(result.vendors),
                error="; ".join(e.message for e in result.errors) or None,
            )
        return result

    async def get_history(self, sku: str, limit: int | None = None) -> list[ScanResult]:
        """Past scans for a SKU, most recent first."""
        self.get_targets(sku)
        return await self._cache.get_history(sku, limit)

    async def _scan(self, sku: str, targets: list[VendorTarget]) -> ScanResult:
        previous = await self._cache.get(sku)
        if previous is not None and self._cache.is_fresh(previous):
            logger.debug(f"Serving fresh cache for {sku}")
            return previous.model_copy(update={"cached": True, "stale": False})

        try:
            async with self._lock.hold(sku) as lease:
                if not lease.acquired:
                    raise LockContentionError(sku)
                if self._breaker.can_request():
                    return await self._fetch_and_store(sku, targets, previous)
        except LockContentionError as e:
            logger.info(f"{e}, serving stale cache")
            cached = await self._cache.get(sku)
            if cached is None:
                raise InProgressNoDataError(sku) from e
            note = VendorError(
                vendor="scan",
                kind="in_progress",
                message=(
                    f"A refresh of {sku} is already running, "
                    "showing the last result"
                ),
            )
            return self._as_stale(cached, [*cached.errors, note])

        reset_after = self._breaker.get_time_until_reset() or 0
        logger.warning(
            f"Circuit open for '{self._breaker.service_id}', skipping live scan "
            f"of {sku} (retry after {reset_after:.1f}s)"
        )
        error = VendorError(
            vendor=self._breaker.service_id,
            kind="circuit_open",
            message=f"Extraction service unavailable, retry after {reset_after:.1f}s",
        )
        return await self._stale_or_fail(sku, previous, [error])

    async def _fetch_and_store(
        self,
        sku: str,
        targets: list[VendorTarget],
        previous: ScanResult | None,
    ) -> ScanResult:
        outcomes = await asyncio.gather(
            *(self._fetch_vendor(target) for target in targets),
            return_exceptions=True,
        )

        vendors: list[VendorResult] = []
        errors: list[VendorError] = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, VendorResult):
                vendors.append(outcome)
            elif isinstance(outcome, Exception):
                logger.warning(f"Vendor {target.name} failed for {sku}: {outcome}")
                errors.append(
                    VendorError(
                        vendor=target.name,
                        kind=_error_kind(outcome),
                        message=str(outcome),
                    )
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                logger.warning(
                    f"Vendor {target.name} returned {type(outcome).__name__} "
                    f"for {sku}, expected VendorResult"
                )
                errors.append(
                    VendorError(
                        vendor=target.name,
                        kind="malformed_response",
                        message=(
                            f"Unexpected extractor result: {type(outcome).__name__}"
                        ),
                    )
                )

        if not vendors:
            logger.warning(f"All {len(targets)} vendors failed for {sku}")
            return await self._stale_or_fail(sku, previous, errors)

        current = ScanResult(
            sku=sku,
            scanned_at=self._clock(),
            vendors=vendors,
            errors=errors,
        )
        result = detect_changes(current, previous)

        await self._cache.set(sku, result)
        await self._cache.append_history(sku, result)

        logger.info(
            f"Scanned {sku}: {len(vendors)}/{len(targets)} vendors succeeded"
            + (" (partial)" if result.is_partial else "")
        )
        return result

    async def _fetch_vendor(self, target: VendorTarget) -> VendorResult:
        async def attempt() -> VendorResult:
            return await self._extractor.extract(target)

        return await self._breaker.call(
            lambda: with_retry(
                attempt,
                self._retry_policy,
                sleep=self._sleep,
                label=f"extract {target.name}",
            )
        )

    async def _stale_or_fail(
        self,
        sku: str,
        previous: ScanResult | None,
        errors: list[VendorError],
    ) -> ScanResult:
        fallback = previous or await self._cache.get(sku)
        if fallback is None:
            raise UpstreamUnavailableError(sku, errors)
        logger.warning(f"Serving stale cache for {sku} from {fallback.scanned_at}")
        return self._as_stale(fallback, errors)

    @staticmethod
    def _as_stale(result: ScanResult, errors: list[VendorError]) -> ScanResult:
        return result.model_copy(
            update={"cached": False, "stale": True, "errors": list(errors)}
        )

    def _record(
        self,
        sku: str,
        started: float,
        *,
        success: bool,
        cached: bool,
        vendor_count: int | None = None,
        error: str | None = None,
    ) -> None:
        event = AnalyticsEvent(
            sku=sku,
            success=success,
            cached=cached,
            response_time_ms=round((time.perf_counter() - started) * 1000, 1),
            timestamp=epoch_ms(),
            vendor_count=vendor_count,
            error_message=error,
        )
        self._analytics.record(event)
