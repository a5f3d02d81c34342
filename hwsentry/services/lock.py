"""
DistributedLock - per-SKU mutual exclusion on top of the key-value store.

Acquisition is a single atomic set-if-absent with a TTL. Each acquisition
writes a random token, and release only deletes the key while it still
holds that token, so a holder that overran its TTL cannot free a lock
that someone else has since taken.
"""

import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from loguru import logger

from hwsentry.services.errors import StoreUnavailableError
from hwsentry.services.kv_store import KeyValueStore


@dataclass
class LockLease:
    """Outcome of a scoped lock acquisition."""

    key: str
    token: str | None
    ttl: float
    acquired_at: float
    _clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @property
    def acquired(self) -> bool:
        return self.token is not None

    @property
    def elapsed(self) -> float:
        return self._clock() - self.acquired_at

    @property
    def expired(self) -> bool:
        """True once the holder has outlived the lock TTL."""
        return self.acquired and self.elapsed >= self.ttl


class DistributedLock:
    """
    Lock keyed by SKU.

    Usage:
        lock = DistributedLock(store)

        async with lock.hold("RTX-4090") as lease:
            if not lease.acquired:
                return fallback()
            ...  # critical section
    """

    def __init__(
        self,
        store: KeyValueStore,
        default_ttl: float = 120.0,
        prefix: str = "lock:scan:",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self.default_ttl = default_ttl
        self._prefix = prefix
        self._clock = clock

    def key_for(self, sku: str) -> str:
        return f"{self._prefix}{sku}"

    async def acquire(self, sku: str, ttl: float | None = None) -> str | None:
        """
        Try to take the lock.

        Returns:
            The lock token on success, None if the lock is held or the
            store could not be reached
        """
        ttl = ttl or self.default_ttl
        key = self.key_for(sku)
        token = secrets.token_hex(16)
        try:
            acquired = await self._store.set_if_absent(key, token, ttl)
        except StoreUnavailableError as e:
            logger.warning(f"Lock store unavailable for {sku}, treating as held: {e}")
            return None

        if not acquired:
            logger.debug(f"Lock {key} is held by another scan")
            return None

        logger.debug(f"Acquired lock {key} (TTL: {ttl}s)")
        return token

    async def release(self, sku: str, token: str) -> bool:
        """
        Release the lock if ``token`` still owns it. Never raises.

        Returns:
            True if the key was deleted
        """
        key = self.key_for(sku)
        try:
            released = await self._store.delete_if_equals(key, token)
        except StoreUnavailableError as e:
            logger.warning(f"Failed to release lock {key}, it will expire: {e}")
            return False

        if not released:
            logger.debug(f"Lock {key} already expired or taken over")
        return released

    async def is_locked(self, sku: str) -> bool:
        try:
            return await self._store.get(self.key_for(sku)) is not None
        except StoreUnavailableError:
            return True

    @asynccontextmanager
    async def hold(self, sku: str, ttl: float | None = None) -> AsyncIterator[LockLease]:
        """Acquire for the duration of the block, releasing on every exit path."""
        ttl = ttl or self.default_ttl
        token = await self.acquire(sku, ttl)
        lease = LockLease(
            key=self.key_for(sku),
            token=token,
            ttl=ttl,
            acquired_at=self._clock(),
            _clock=self._clock,
        )
        try:
            yield lease
        finally:
            if lease.acquired:
                if lease.expired:
                    logger.warning(
                        f"Critical section for {sku} ran {lease.elapsed:.1f}s, "
                        f"past the {ttl:.0f}s lock TTL"
                    )
                await self.release(sku, token)
