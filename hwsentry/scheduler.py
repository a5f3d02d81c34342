"""
Maintenance scheduler.
Uses APScheduler to periodically reclaim rate limiter and store memory.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from hwsentry.services.kv_store import KeyValueStore
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter
from hwsentry.utils import log_job


class MaintenanceScheduler:
    """Runs periodic cleanup for in-process state."""

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        store: KeyValueStore,
        interval_seconds: int = 60,
    ):
        self.scheduler = AsyncIOScheduler()
        self.rate_limiter = rate_limiter
        self.store = store
        self.interval_seconds = interval_seconds
        self._is_running = False

    @log_job
    async def sweep_job(self) -> dict[str, int]:
        """Drop idle rate limiter clients and expired store keys."""
        clients = self.rate_limiter.sweep()
        keys = await self.store.purge_expired()
        if clients or keys:
            logger.info(
                f"Maintenance sweep: {clients} idle clients, {keys} expired keys"
            )
        return {"clients": clients, "keys": keys}

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        self.scheduler.add_job(
            self.sweep_job,
            trigger="interval",
            seconds=self.interval_seconds,
            id="maintenance_sweep_job",
            name="Rate limiter and store sweep",
            replace_existing=True,
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Maintenance scheduler started: sweeping every {self.interval_seconds}s"
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running
