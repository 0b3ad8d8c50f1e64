"""Bounded in-memory cache with TTL expiry and LRU eviction.

Entries expire after their time-to-live.  Expired entries are removed
lazily by :meth:`SanctumCache.get` and periodically by a background sweep
task (:meth:`SanctumCache.start`), so keys that are never read again
still get cleaned up.  When the cache is full, :meth:`SanctumCache.set`
evicts the least recently accessed entry before inserting.

The cache is private to one engine and is only touched from the event
loop thread, so it carries no lock.

Example::

    cache = SanctumCache(max_size=2, default_ttl=60)
    cache.set("user", {"id": 1})
    cache.get("user")          # {"id": 1}
    cache.set("a", 1)
    cache.set("b", 2)          # evicts "user"
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sanctum_auth.constants import (
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_CACHE_SWEEP_INTERVAL,
    DEFAULT_CACHE_TTL,
)
from sanctum_auth.logger import SanctumLogger


@dataclass
class CacheEntry:
    """A cached value with its expiry and last-access times (monotonic seconds)."""

    value: Any
    expires_at: float
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SanctumCache:
    """TTL + LRU cache bounded by entry count.

    Args:
        max_size: Maximum number of entries.
        default_ttl: TTL in seconds applied when :meth:`set` gets none.
        sweep_interval: Seconds between background expiry sweeps.
        logger: Receives cache traces in debug mode.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        default_ttl: float = DEFAULT_CACHE_TTL,
        sweep_interval: float = DEFAULT_CACHE_SWEEP_INTERVAL,
        logger: Optional[SanctumLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._logger = logger
        self._clock = clock
        # Ordered least- to most-recently accessed.
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    @property
    def max_size(self) -> int:
        return self._max_size

    # ------------------------------------------------------------------ #
    # Access
    # ------------------------------------------------------------------ #

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* if missing or expired.

        A hit marks the entry as most recently accessed.  An expired entry
        is deleted on the spot.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._trace("get", key, hit=False)
            return default
        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._trace("expire", key)
            return default
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._trace("get", key, hit=True)
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store *value* under *key* for *ttl* seconds (default TTL if ``None``)."""
        now = self._clock()
        ttl = self._default_ttl if ttl is None else ttl
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            self._evict()
        self._entries[key] = CacheEntry(value=value, expires_at=now + ttl, last_accessed=now)
        self._trace("set", key)

    def delete(self, key: str) -> bool:
        """Remove *key*.  Returns ``True`` if it was present."""
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._trace("delete", key)
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._trace("sweep", f"{len(expired)} entries")
        return len(expired)

    def _evict(self) -> None:
        if self.sweep():
            return
        key, _ = self._entries.popitem(last=False)
        self._trace("evict", key)

    # ------------------------------------------------------------------ #
    # Background sweep
    # ------------------------------------------------------------------ #

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop.  Idempotent."""
        if self.sweeping:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "entries": len(self._entries),
            "expired": expired,
            "max_size": self._max_size,
            "default_ttl": self._default_ttl,
            "sweeping": self.sweeping,
        }

    def _trace(self, operation: str, key: str, hit: Optional[bool] = None) -> None:
        if self._logger is not None:
            self._logger.log_cache_operation(operation, key, hit)
