"""Facade bundling the cache, connection pool, and metrics of one engine."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import CacheConfig
from sanctum_auth.resilience.cache import SanctumCache
from sanctum_auth.resilience.metrics import Metrics
from sanctum_auth.resilience.pool import ConnectionPool

T = TypeVar("T")


class Performance:
    """Owns the resilience resources shared by an engine and its pipeline.

    Args:
        cache_config: Cache size, TTL and sweep settings.
        max_connections: Connection accounting bound.
        logger: Receives cache and timing traces.
    """

    def __init__(
        self,
        cache_config: CacheConfig,
        max_connections: int,
        logger: SanctumLogger,
    ) -> None:
        self._cache_config = cache_config
        self._logger = logger
        self.cache = SanctumCache(
            max_size=cache_config.max_size,
            default_ttl=cache_config.ttl,
            sweep_interval=cache_config.sweep_interval,
            logger=logger,
        )
        self.pool = ConnectionPool(max_connections)
        self.metrics = Metrics()

    async def measure_operation(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Await *operation*, recording its duration and outcome under *name*."""
        start = time.perf_counter()
        try:
            result = await operation()
        except BaseException:
            elapsed = (time.perf_counter() - start) * 1000
            self.metrics.record(name, elapsed, error=True)
            self._logger.log_performance(name, elapsed)
            raise
        elapsed = (time.perf_counter() - start) * 1000
        self.metrics.record(name, elapsed)
        self._logger.log_performance(name, elapsed)
        return result

    async def cached(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        force_refresh: bool = False,
    ) -> T:
        """Return the cached value for *key*, or await *operation* and cache it.

        With caching disabled the operation always runs.  *force_refresh*
        bypasses the lookup but still refills the cache.
        """
        if not self._cache_config.enabled:
            return await operation()
        if not force_refresh:
            hit = self.cache.get(key)
            if hit is not None:
                return hit
        value = await operation()
        if value is not None:
            self.cache.set(key, value, ttl)
        return value

    def start(self) -> None:
        """Start background maintenance (the cache sweep)."""
        if self._cache_config.enabled:
            self.cache.start()

    async def aclose(self) -> None:
        await self.cache.stop()
        self.cache.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "connections": self.pool.stats(),
            "operations": {
                name: stats.to_dict() for name, stats in self.metrics.all_stats().items()
            },
        }
