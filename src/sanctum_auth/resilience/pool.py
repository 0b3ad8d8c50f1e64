"""Connection accounting: caps the number of requests on the wire at once."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator

from sanctum_auth.constants import DEFAULT_MAX_CONNECTIONS


class ConnectionPool:
    """Counts in-flight requests and makes callers wait for a free slot.

    Args:
        max_connections: Upper bound on concurrent requests.

    Example::

        pool = ConnectionPool(5)
        async with pool.connection():
            response = await transport.send(request)
    """

    def __init__(self, max_connections: int = DEFAULT_MAX_CONNECTIONS) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self._max = max_connections
        self._slots = asyncio.Semaphore(max_connections)
        self._active = 0
        self._peak = 0
        self._total = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def available(self) -> int:
        return self._max - self._active

    async def acquire(self) -> None:
        await self._slots.acquire()
        self._active += 1
        self._total += 1
        self._peak = max(self._peak, self._active)

    def release(self) -> None:
        if self._active == 0:
            raise RuntimeError("release() called without a matching acquire()")
        self._active -= 1
        self._slots.release()

    @contextlib.asynccontextmanager
    async def connection(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def stats(self) -> dict[str, Any]:
        return {
            "active": self._active,
            "available": self.available,
            "max_connections": self._max,
            "utilization": self._active / self._max,
            "peak": self._peak,
            "total_acquired": self._total,
        }
