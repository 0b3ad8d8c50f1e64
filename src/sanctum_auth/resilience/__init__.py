"""Resilience layer: bounded cache, retry policy, metrics, and connection accounting.

Nothing here depends on the engine or the middleware chain; both are
built on top of these pieces.
"""

from sanctum_auth.resilience.cache import CacheEntry, SanctumCache
from sanctum_auth.resilience.metrics import Metrics, OperationStats
from sanctum_auth.resilience.performance import Performance
from sanctum_auth.resilience.pool import ConnectionPool
from sanctum_auth.resilience.retry import RequestKey, RetryPolicy, RetryTicket, normalize_path

__all__ = [
    "CacheEntry",
    "ConnectionPool",
    "Metrics",
    "OperationStats",
    "Performance",
    "RequestKey",
    "RetryPolicy",
    "RetryTicket",
    "SanctumCache",
    "normalize_path",
]
