"""Retry stage: re-sends transient failures with exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import httpx

from sanctum_auth.client.pipeline import Dispatch, ErrorOutcome, Middleware, RequestContext
from sanctum_auth.client.transport import RequestFailure
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.resilience.retry import RetryPolicy


class RetryMiddleware(Middleware):
    """Outermost stage.  Retries eligible failures via direct dispatch.

    Re-sent requests go straight to the transport with the headers the
    inner stages already attached, so no stage runs twice for one attempt.
    When attempts run out the last failure is returned unchanged.

    Args:
        policy: Eligibility, delays and attempt tickets.
        logger: Receives a warning per retry.
        sleep: Awaitable delay function, replaceable in tests.
    """

    name = "retry"

    def __init__(
        self,
        policy: RetryPolicy,
        logger: SanctumLogger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._policy = policy
        self._logger = logger
        self._sleep = sleep

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> None:
        self._policy.close_ticket(ctx.key)

    async def on_error(
        self, ctx: RequestContext, failure: RequestFailure, dispatch: Dispatch
    ) -> ErrorOutcome:
        current = failure
        while self._policy.should_retry(ctx.key, current):
            ticket = self._policy.record_attempt(ctx.key, current)
            delay = self._policy.delay_for(ticket.attempts - 1)
            self._logger.warning(
                f"retrying {ctx.key} in {delay:.2f}s "
                f"(attempt {ticket.attempts}/{self._policy.max_retries}): {current.message}"
            )
            await self._sleep(delay)
            try:
                response = await dispatch(ctx)
            except RequestFailure as exc:
                current = exc
                continue
            self._policy.close_ticket(ctx.key)
            return response

        self._policy.close_ticket(ctx.key)
        return current
