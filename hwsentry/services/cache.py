"""
ScanCache - last known scan result per SKU, plus a bounded history.

Features:
- Latest result per SKU with a TTL (entry exists at all)
- Freshness window, separate from the TTL, that decides whether a live
  fetch can be skipped; re-evaluated on every read
- Time-ordered history per SKU trimmed to the most recent N scans
- Degrades on store failures: reads miss, writes are skipped
"""

from datetime import datetime, timedelta
from typing import Callable

from loguru import logger
from pydantic import ValidationError

from hwsentry.models import ScanResult
from hwsentry.services.errors import StoreUnavailableError
from hwsentry.services.kv_store import KeyValueStore
from hwsentry.utils import utcnow


class ScanCache:
    """
    Cache of scan results backed by a key-value store.

    Usage:
        cache = ScanCache(store)

        cached = await cache.get("RTX-4090")
        if cached and cache.is_fresh(cached):
            return cached

        result = await scan_live()
        await cache.set("RTX-4090", result)
        await cache.append_history("RTX-4090", result)
    """

    def __init__(
        self,
        store: KeyValueStore,
        prefix: str = "scan:",
        default_ttl: timedelta = timedelta(hours=1),
        fresh_window: timedelta = timedelta(minutes=5),
        history_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
        debug: bool = False,
    ):
        self._store = store
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._fresh_window = fresh_window
        self._history_limit = history_limit
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    @property
    def fresh_window(self) -> timedelta:
        return self._fresh_window

    def latest_key(self, sku: str) -> str:
        return f"{self._prefix}latest:{sku}"

    def history_key(self, sku: str) -> str:
        return f"{self._prefix}history:{sku}"

    async def get(self, sku: str) -> ScanResult | None:
        """
        Get the last stored result for a SKU.

        Returns None on a miss, on an undecodable entry, or if the store
        is unavailable.
        """
        key = self.latest_key(sku)
        try:
            raw = await self._store.get(key)
        except StoreUnavailableError as e:
            self._stats.errors += 1
            logger.warning(f"Cache read failed for {sku}, treating as miss: {e}")
            return None

        if raw is None:
            self._stats.misses += 1
            self._log(f"MISS: {key}")
            return None

        try:
            result = ScanResult.model_validate_json(raw)
        except ValidationError as e:
            self._stats.errors += 1
            logger.warning(f"Discarding undecodable cache entry for {sku}: {e}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key}")
        return result

    async def set(
        self,
        sku: str,
        result: ScanResult,
        ttl: timedelta | None = None,
    ) -> bool:
        """
        Store the latest result for a SKU.

        The cached/stale flags describe how a result was served, so they are
        cleared before writing.

        Returns:
            True if the write reached the store
        """
        ttl = ttl or self._default_ttl
        key = self.latest_key(sku)
        payload = result.model_copy(update={"cached": False, "stale": False})
        try:
            await self._store.set(key, payload.model_dump_json(), ttl.total_seconds())
        except StoreUnavailableError as e:
            self._stats.errors += 1
            logger.warning(f"Cache write failed for {sku}: {e}")
            return False

        self._log(f"SET: {key} (TTL: {ttl.total_seconds()}s)")
        return True

    def is_fresh(
        self,
        result: ScanResult,
        fresh_window: timedelta | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Check if a result is young enough to skip a live fetch."""
        window = fresh_window if fresh_window is not None else self._fresh_window
        now = now or self._clock()
        return now - result.scanned_at <= window

    async def append_history(self, sku: str, result: ScanResult) -> bool:
        """Add a result to the SKU's history, keeping only the newest entries."""
        key = self.history_key(sku)
        payload = result.model_copy(update={"cached": False, "stale": False})
        pipe = self._store.pipeline()
        pipe.zadd(key, result.scanned_at.timestamp(), payload.model_dump_json())
        pipe.zremrangebyrank(key, 0, -(self._history_limit + 1))
        try:
            await pipe.execute()
        except StoreUnavailableError as e:
            self._stats.errors += 1
            logger.warning(f"History write failed for {sku}: {e}")
            return False

        self._log(f"HISTORY: {key}")
        return True

    async def get_history(self, sku: str, limit: int | None = None) -> list[ScanResult]:
        """Get past results for a SKU, most recent first."""
        limit = self._history_limit if limit is None else limit
        if limit <= 0:
            return []
        try:
            raw_entries = await self._store.zrange(
                self.history_key(sku), 0, limit - 1, rev=True
            )
        except StoreUnavailableError as e:
            logger.warning(f"History read failed for {sku}: {e}")
            return []

        history = []
        for raw in raw_entries:
            try:
                history.append(ScanResult.model_validate_json(raw))
            except ValidationError:
                logger.warning(f"Skipping undecodable history entry for {sku}")
        return history

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ScanCache] {message}")


class CacheStats:
    """Cache statistics."""

    def __init__(self):
        self.hits: int = 0
        self.misses: int = 0
        self.errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
