"""
Key-value store contract and an in-process implementation.

The contract mirrors the Redis subset the scan layer needs: strings with a
per-key TTL, an atomic set-if-absent, counters, sorted sets, lists, and a
pipeline that applies a batch of commands atomically. Ranges are inclusive
and accept negative indexes, as in Redis.

Any failure talking to the store surfaces as ``StoreUnavailableError``.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from hwsentry.services.errors import StoreUnavailableError


class Pipeline:
    """
    Collects commands and applies them in one atomic batch.

    Usage:
        pipe = store.pipeline()
        pipe.incr("hits").lpush("times", "120").ltrim("times", 0, 99)
        results = await pipe.execute()
    """

    def __init__(self, store: "KeyValueStore"):
        self._store = store
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    def _add(self, name: str, *args: Any) -> "Pipeline":
        self._commands.append((name, args))
        return self

    def set(self, key: str, value: str, ttl: float | None = None) -> "Pipeline":
        return self._add("set", key, value, ttl)

    def delete(self, *keys: str) -> "Pipeline":
        return self._add("delete", *keys)

    def incr(self, key: str, amount: int = 1) -> "Pipeline":
        return self._add("incr", key, amount)

    def zadd(self, key: str, score: float, member: str) -> "Pipeline":
        return self._add("zadd", key, score, member)

    def zincrby(self, key: str, amount: float, member: str) -> "Pipeline":
        return self._add("zincrby", key, amount, member)

    def zremrangebyrank(self, key: str, start: int, end: int) -> "Pipeline":
        return self._add("zremrangebyrank", key, start, end)

    def lpush(self, key: str, value: Any) -> "Pipeline":
        return self._add("lpush", key, value)

    def ltrim(self, key: str, start: int, end: int) -> "Pipeline":
        return self._add("ltrim", key, start, end)

    def __len__(self) -> int:
        return len(self._commands)

    async def execute(self) -> list[Any]:
        """Apply all queued commands. Returns one result per command."""
        commands, self._commands = self._commands, []
        if not commands:
            return []
        return await self._store.execute_batch(commands)


class KeyValueStore(ABC):
    """Abstract key-value store used for cache, locks and analytics."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: float | None = None) -> None: ...

    @abstractmethod
    async def set_if_absent(
        self, key: str, value: str, ttl: float | None = None
    ) -> bool:
        """Atomically set ``key`` only if it does not exist."""
        ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete ``key`` only if it currently holds ``value``."""
        ...

    @abstractmethod
    async def ttl(self, key: str) -> float | None:
        """Seconds until ``key`` expires, None if it has no expiry or is absent."""
        ...

    @abstractmethod
    async def incr(self, key: str, amount: int = 1) -> int: ...

    @abstractmethod
    async def zadd(self, key: str, score: float, member: str) -> None: ...

    @abstractmethod
    async def zincrby(self, key: str, amount: float, member: str) -> float: ...

    @abstractmethod
    async def zrange(
        self,
        key: str,
        start: int,
        end: int,
        rev: bool = False,
        with_scores: bool = False,
    ) -> list[Any]: ...

    @abstractmethod
    async def zremrangebyrank(self, key: str, start: int, end: int) -> int: ...

    @abstractmethod
    async def lpush(self, key: str, value: Any) -> int: ...

    @abstractmethod
    async def lrange(self, key: str, start: int, end: int) -> list[str]: ...

    @abstractmethod
    async def ltrim(self, key: str, start: int, end: int) -> None: ...

    @abstractmethod
    async def execute_batch(
        self, commands: list[tuple[str, tuple[Any, ...]]]
    ) -> list[Any]: ...

    @abstractmethod
    async def purge_expired(self) -> int: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    def pipeline(self) -> Pipeline:
        return Pipeline(self)

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None


@dataclass
class _Entry:
    value: Any  # str | dict[str, float] | list[str]
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def _inclusive_range(length: int, start: int, end: int) -> tuple[int, int] | None:
    """Normalize a Redis-style inclusive range. None if it is empty."""
    if start < 0:
        start = max(length + start, 0)
    if end < 0:
        end = length + end
    end = min(end, length - 1)
    if start > end or length == 0:
        return None
    return start, end


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process store with the same semantics as the Redis subset above.

    Every command runs under one asyncio lock, so single commands and
    pipelines are atomic with respect to other tasks on the loop.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._data: dict[str, _Entry] = {}
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()

    # Public API

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._get(key)

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        async with self._lock:
            self._set(key, value, ttl)

    async def set_if_absent(
        self, key: str, value: str, ttl: float | None = None
    ) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._set(key, value, ttl)
            return True

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            return self._delete(*keys)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry.value != value:
                return False
            del self._data[key]
            return True

    async def ttl(self, key: str) -> float | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0.0, entry.expires_at - self._clock())

    async def incr(self, key: str, amount: int = 1) -> int:
        async with self._lock:
            return self._incr(key, amount)

    async def zadd(self, key: str, score: float, member: str) -> None:
        async with self._lock:
            self._zadd(key, score, member)

    async def zincrby(self, key: str, amount: float, member: str) -> float:
        async with self._lock:
            return self._zincrby(key, amount, member)

    async def zrange(
        self,
        key: str,
        start: int,
        end: int,
        rev: bool = False,
        with_scores: bool = False,
    ) -> list[Any]:
        async with self._lock:
            zset = self._container(key, dict)
            if zset is None:
                return []
            ordered = sorted(zset.items(), key=lambda kv: (kv[1], kv[0]), reverse=rev)
            bounds = _inclusive_range(len(ordered), start, end)
            if bounds is None:
                return []
            picked = ordered[bounds[0] : bounds[1] + 1]
            if with_scores:
                return [(member, score) for member, score in picked]
            return [member for member, _ in picked]

    async def zremrangebyrank(self, key: str, start: int, end: int) -> int:
        async with self._lock:
            return self._zremrangebyrank(key, start, end)

    async def lpush(self, key: str, value: Any) -> int:
        async with self._lock:
            return self._lpush(key, value)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        async with self._lock:
            items = self._container(key, list)
            if items is None:
                return []
            bounds = _inclusive_range(len(items), start, end)
            if bounds is None:
                return []
            return list(items[bounds[0] : bounds[1] + 1])

    async def ltrim(self, key: str, start: int, end: int) -> None:
        async with self._lock:
            self._ltrim(key, start, end)

    async def execute_batch(
        self, commands: list[tuple[str, tuple[Any, ...]]]
    ) -> list[Any]:
        async with self._lock:
            results = []
            for name, args in commands:
                handler = getattr(self, f"_{name}", None)
                if handler is None:
                    raise StoreUnavailableError(f"Unsupported pipeline command: {name}")
                results.append(handler(*args))
            self._log(f"PIPELINE: {len(commands)} commands")
            return results

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [k for k, v in self._data.items() if v.is_expired(now)]
            for key in expired:
                del self._data[key]
            if expired:
                self._log(f"PURGE: {len(expired)} expired keys removed")
            return len(expired)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._data)

    # Command implementations (called with the lock held)

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            self._log(f"EXPIRED: {key}")
            return None
        return entry

    def _container(self, key: str, kind: type) -> Any:
        entry = self._live(key)
        if entry is None:
            return None
        if not isinstance(entry.value, kind):
            raise StoreUnavailableError(
                f"WRONGTYPE: key '{key}' does not hold a {kind.__name__}"
            )
        return entry.value

    def _expiry(self, ttl: float | None) -> float | None:
        return self._clock() + ttl if ttl is not None else None

    def _get(self, key: str) -> str | None:
        value = self._container(key, str)
        self._log(f"{'HIT' if value is not None else 'MISS'}: {key}")
        return value

    def _set(self, key: str, value: str, ttl: float | None = None) -> None:
        self._data[key] = _Entry(value=str(value), expires_at=self._expiry(ttl))
        self._log(f"SET: {key} (TTL: {ttl}s)")

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    def _incr(self, key: str, amount: int = 1) -> int:
        entry = self._live(key)
        current = 0
        if entry is not None:
            try:
                current = int(entry.value)
            except (TypeError, ValueError) as e:
                raise StoreUnavailableError(
                    f"Value at '{key}' is not an integer"
                ) from e
        new_value = current + amount
        expires_at = entry.expires_at if entry is not None else None
        self._data[key] = _Entry(value=str(new_value), expires_at=expires_at)
        return new_value

    def _zadd(self, key: str, score: float, member: str) -> None:
        zset = self._container(key, dict)
        if zset is None:
            zset = {}
            self._data[key] = _Entry(value=zset)
        zset[member] = float(score)

    def _zincrby(self, key: str, amount: float, member: str) -> float:
        zset = self._container(key, dict)
        if zset is None:
            zset = {}
            self._data[key] = _Entry(value=zset)
        zset[member] = zset.get(member, 0.0) + amount
        return zset[member]

    def _zremrangebyrank(self, key: str, start: int, end: int) -> int:
        zset = self._container(key, dict)
        if zset is None:
            return 0
        ordered = sorted(zset.items(), key=lambda kv: (kv[1], kv[0]))
        bounds = _inclusive_range(len(ordered), start, end)
        if bounds is None:
            return 0
        for member, _ in ordered[bounds[0] : bounds[1] + 1]:
            del zset[member]
        if not zset:
            del self._data[key]
        return bounds[1] - bounds[0] + 1

    def _lpush(self, key: str, value: Any) -> int:
        items = self._container(key, list)
        if items is None:
            items = []
            self._data[key] = _Entry(value=items)
        items.insert(0, str(value))
        return len(items)

    def _ltrim(self, key: str, start: int, end: int) -> None:
        items = self._container(key, list)
        if items is None:
            return
        bounds = _inclusive_range(len(items), start, end)
        if bounds is None:
            del self._data[key]
            return
        items[:] = items[bounds[0] : bounds[1] + 1]

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[MemoryKeyValueStore] {message}")
