"""Retry policy: eligibility, exponential backoff with jitter, attempt tickets.

Delay for attempt *n* (0-indexed)::

    base  = min(initial_delay * backoff_multiplier ** n, max_delay)
    delay = max(0, base + uniform(-0.25 * base, 0.25 * base))

Attempts are tracked per logical request in a :class:`RetryTicket`,
keyed by a :class:`RequestKey` (method, normalized path, sequence number).
The sequence number comes from a per-policy monotonic counter, so two
concurrent requests to the same endpoint never share a ticket.
"""

from __future__ import annotations

import itertools
import random
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

from sanctum_auth.client.transport import FailureKind, RequestFailure
from sanctum_auth.constants import RETRY_JITTER
from sanctum_auth.models import RetryConfig


def normalize_path(path: str) -> str:
    """Reduce a path or URL to a canonical route for request identity.

    Drops scheme, host, query and fragment, collapses duplicate slashes and
    strips a trailing slash::

        >>> normalize_path("https://api.example.com//api/user/?page=2")
        '/api/user'
    """
    route = urlsplit(path).path or "/"
    segments = [segment for segment in route.split("/") if segment]
    return "/" + "/".join(segments)


@dataclass(frozen=True)
class RequestKey:
    """Stable identity of one logical request."""

    method: str
    path: str
    sequence: int

    def __str__(self) -> str:
        return f"{self.method} {self.path}#{self.sequence}"


@dataclass
class RetryTicket:
    """Attempt bookkeeping for one in-flight request."""

    key: RequestKey
    attempts: int = 0
    created_at: float = field(default_factory=time.monotonic)
    last_failure: Optional[str] = None


class RetryPolicy:
    """Decides whether and when to retry, and tracks attempts per request.

    Args:
        config: Retry settings (limits, backoff, retryable statuses).
        rng: Random source for jitter; seed one in tests for determinism.
    """

    def __init__(self, config: RetryConfig, rng: Optional[random.Random] = None) -> None:
        self._config = config
        self._rng = rng or random.Random()
        self._sequence = itertools.count(1)
        self._tickets: dict[RequestKey, RetryTicket] = {}

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def max_retries(self) -> int:
        return self._config.max_retries

    def new_key(self, method: str, path: str) -> RequestKey:
        """Allocate a fresh identity for a request about to be sent."""
        return RequestKey(method.upper(), normalize_path(path), next(self._sequence))

    # ------------------------------------------------------------------ #
    # Eligibility and delay
    # ------------------------------------------------------------------ #

    def is_retryable(self, failure: RequestFailure) -> bool:
        """Timeouts, connection failures, and listed status codes are retryable."""
        kind = failure.kind
        if kind.is_timeout or kind is FailureKind.CONNECTION:
            return True
        if kind is FailureKind.BAD_RESPONSE:
            return failure.status_code in self._config.retryable_status_codes
        return False

    def should_retry(self, key: RequestKey, failure: RequestFailure) -> bool:
        """True if *failure* is retryable and *key* still has attempts left."""
        if not self._config.enabled or not self.is_retryable(failure):
            return False
        ticket = self._tickets.get(key)
        attempts = ticket.attempts if ticket is not None else 0
        return attempts < self._config.max_retries

    def base_delay(self, attempt: int) -> float:
        """Delay before jitter for 0-indexed *attempt*, in seconds."""
        cfg = self._config
        return min(cfg.initial_delay * cfg.backoff_multiplier**attempt, cfg.max_delay)

    def delay_for(self, attempt: int) -> float:
        """Jittered delay for *attempt*, never negative."""
        base = self.base_delay(attempt)
        spread = base * RETRY_JITTER
        jitter = (self._rng.random() * 2 - 1) * spread
        return max(0.0, base + jitter)

    # ------------------------------------------------------------------ #
    # Tickets
    # ------------------------------------------------------------------ #

    def record_attempt(self, key: RequestKey, failure: RequestFailure) -> RetryTicket:
        """Open the ticket on the first retry and count one more attempt."""
        ticket = self._tickets.get(key)
        if ticket is None:
            ticket = self._tickets[key] = RetryTicket(key)
        ticket.attempts += 1
        ticket.last_failure = failure.message
        return ticket

    def ticket(self, key: RequestKey) -> Optional[RetryTicket]:
        return self._tickets.get(key)

    def close_ticket(self, key: RequestKey) -> Optional[RetryTicket]:
        """Forget *key* once its request succeeded or was abandoned."""
        return self._tickets.pop(key, None)

    def clear(self) -> None:
        self._tickets.clear()

    def stats(self) -> dict[str, Any]:
        attempts = [ticket.attempts for ticket in self._tickets.values()]
        return {
            "active_tickets": len(attempts),
            "total_attempts": sum(attempts),
            "max_attempts": max(attempts, default=0),
            "max_retries": self._config.max_retries,
            "enabled": self._config.enabled,
        }
