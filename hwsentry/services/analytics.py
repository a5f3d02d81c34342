"""
AnalyticsRecorder - best-effort scan outcome counters.

Writes happen on a detached task so the request path never waits on them,
and every failure is logged at the task boundary instead of propagating.
"""

import asyncio
import json
import math

from loguru import logger
from pydantic import ValidationError

from hwsentry.models import AnalyticsEvent, AnalyticsStats, PopularSku
from hwsentry.services.errors import StoreUnavailableError
from hwsentry.services.kv_store import KeyValueStore

ANALYTICS_KEYS = {
    "scan_count": "analytics:scans:count",
    "scan_success": "analytics:scans:success",
    "scan_failure": "analytics:scans:failure",
    "response_times": "analytics:response_times",
    "cache_hits": "analytics:cache:hits",
    "cache_misses": "analytics:cache:misses",
    "sku_popularity": "analytics:sku:popularity",
    "recent_scans": "analytics:scans:recent",
}


def _to_int(value: str | None) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def _numeric_samples(raw_samples: list[str]) -> list[float]:
    samples = []
    for raw in raw_samples:
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value):
            samples.append(value)
    return samples


class AnalyticsRecorder:
    """
    Aggregates scan events in the key-value store.

    Usage:
        analytics = AnalyticsRecorder(store)
        analytics.record(event)  # returns immediately
        stats = await analytics.get_stats()
    """

    def __init__(
        self,
        store: KeyValueStore,
        response_sample_size: int = 100,
        recent_limit: int = 50,
    ):
        self._store = store
        self._response_sample_size = response_sample_size
        self._recent_limit = recent_limit
        self._pending: set[asyncio.Task[None]] = set()

    def record(self, event: AnalyticsEvent) -> None:
        """Schedule the write for ``event`` and return without waiting."""
        try:
            task = asyncio.get_running_loop().create_task(self._write(event))
        except RuntimeError as e:
            logger.warning(f"[Analytics] No running loop, dropping event: {e}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, event: AnalyticsEvent) -> None:
        try:
            pipe = self._store.pipeline()

            pipe.incr(ANALYTICS_KEYS["scan_count"])
            if event.success:
                pipe.incr(ANALYTICS_KEYS["scan_success"])
            else:
                pipe.incr(ANALYTICS_KEYS["scan_failure"])

            if event.cached:
                pipe.incr(ANALYTICS_KEYS["cache_hits"])
            else:
                pipe.incr(ANALYTICS_KEYS["cache_misses"])

            pipe.zincrby(ANALYTICS_KEYS["sku_popularity"], 1, event.sku)

            pipe.lpush(ANALYTICS_KEYS["response_times"], event.response_time_ms)
            pipe.ltrim(
                ANALYTICS_KEYS["response_times"], 0, self._response_sample_size - 1
            )

            pipe.zadd(
                ANALYTICS_KEYS["recent_scans"],
                event.timestamp,
                event.model_dump_json(),
            )
            pipe.zremrangebyrank(
                ANALYTICS_KEYS["recent_scans"], 0, -(self._recent_limit + 1)
            )

            await pipe.execute()
        except Exception as e:
            # Analytics should never break the main flow
            logger.error(f"[Analytics] Failed to record event for {event.sku}: {e}")

    async def flush(self) -> None:
        """Wait for all scheduled writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def get_stats(self, top_n: int = 10, recent_n: int | None = None) -> AnalyticsStats:
        """Compute aggregate statistics. Returns empty stats if the store fails."""
        recent_n = recent_n or self._recent_limit
        try:
            (
                total,
                successful,
                failed,
                hits,
                misses,
                response_times,
                popular,
                recent,
            ) = await asyncio.gather(
                self._store.get(ANALYTICS_KEYS["scan_count"]),
                self._store.get(ANALYTICS_KEYS["scan_success"]),
                self._store.get(ANALYTICS_KEYS["scan_failure"]),
                self._store.get(ANALYTICS_KEYS["cache_hits"]),
                self._store.get(ANALYTICS_KEYS["cache_misses"]),
                self._store.lrange(
                    ANALYTICS_KEYS["response_times"],
                    0,
                    self._response_sample_size - 1,
                ),
                self._store.zrange(
                    ANALYTICS_KEYS["sku_popularity"],
                    0,
                    top_n - 1,
                    rev=True,
                    with_scores=True,
                ),
                self._store.zrange(
                    ANALYTICS_KEYS["recent_scans"], 0, recent_n - 1, rev=True
                ),
            )
        except StoreUnavailableError as e:
            logger.error(f"[Analytics] Failed to fetch stats: {e}")
            return AnalyticsStats()

        total_count = _to_int(total)
        success_count = _to_int(successful)
        hit_count = _to_int(hits)
        miss_count = _to_int(misses)

        success_rate = success_count / total_count * 100 if total_count > 0 else 0.0
        lookups = hit_count + miss_count
        cache_hit_rate = hit_count / lookups * 100 if lookups > 0 else 0.0

        samples = _numeric_samples(response_times)
        average = sum(samples) / len(samples) if samples else 0.0

        recent_activity = []
        for raw in recent:
            try:
                recent_activity.append(AnalyticsEvent.model_validate_json(raw))
            except (ValidationError, json.JSONDecodeError):
                # Skip invalid entries
                continue

        return AnalyticsStats(
            total_scans=total_count,
            successful_scans=success_count,
            failed_scans=_to_int(failed),
            success_rate=round(success_rate, 1),
            cache_hit_rate=round(cache_hit_rate, 1),
            average_response_time=round(average),
            popular_skus=[
                PopularSku(sku=sku, count=int(score)) for sku, score in popular
            ],
            recent_activity=recent_activity,
        )

    async def reset(self) -> None:
        """Delete all analytics data."""
        try:
            await self._store.delete(*ANALYTICS_KEYS.values())
        except StoreUnavailableError as e:
            logger.error(f"[Analytics] Failed to reset: {e}")
