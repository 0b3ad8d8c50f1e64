"""CSRF stage: XSRF header injection and one-shot mismatch recovery.

Active only in ``spa`` and ``hybrid`` modes, for state-changing methods
sent to a stateful domain.  The header value comes from, in order:

1. the cached value in :class:`CsrfContext`,
2. the ``XSRF-TOKEN`` cookie (percent-decoded),
3. a bootstrap call to the CSRF cookie endpoint, then the cookie again.

When a request fails with a CSRF mismatch (HTTP 419), the cached value is
dropped, the cookie is bootstrapped again, and the request is re-sent once
with the fresh value.  A second mismatch is passed on and surfaces as a
``CSRF`` error.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from sanctum_auth import constants as C
from sanctum_auth.auth.cookies import CookieManager
from sanctum_auth.client.pipeline import (
    Dispatch,
    ErrorOutcome,
    Middleware,
    RequestContext,
    is_csrf_failure,
)
from sanctum_auth.client.transport import RequestFailure
from sanctum_auth.exceptions import SanctumError
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import SanctumConfig
from sanctum_auth.resilience.retry import normalize_path


class CsrfContext:
    """The cached XSRF token value and its refresh bookkeeping."""

    def __init__(self) -> None:
        self.token: Optional[str] = None
        self.updated_at: Optional[float] = None
        self.refresh_count = 0

    def update(self, token: str) -> None:
        self.token = token
        self.updated_at = time.monotonic()

    def clear(self) -> None:
        self.token = None
        self.updated_at = None

    def stats(self) -> dict[str, Any]:
        return {
            "has_token": self.token is not None,
            "refresh_count": self.refresh_count,
            "age_seconds": None if self.updated_at is None else time.monotonic() - self.updated_at,
        }


class CsrfMiddleware(Middleware):
    """Attaches ``X-XSRF-TOKEN`` and heals CSRF mismatches once per request.

    Concurrent requests that all need a bootstrap share one in-flight
    bootstrap call.
    """

    name = "csrf"

    def __init__(
        self,
        config: SanctumConfig,
        cookies: CookieManager,
        context: CsrfContext,
        logger: SanctumLogger,
    ) -> None:
        self._config = config
        self._cookies = cookies
        self._context = context
        self._logger = logger
        self._csrf_path = normalize_path(config.endpoints.csrf_cookie)
        self._bootstrap_task: Optional[asyncio.Task] = None

    @property
    def context(self) -> CsrfContext:
        return self._context

    def applies_to(self, ctx: RequestContext) -> bool:
        return (
            self._config.uses_csrf
            and ctx.method in C.STATEFUL_METHODS
            and normalize_path(ctx.path) != self._csrf_path
            and self._cookies.is_domain_stateful()
        )

    # ------------------------------------------------------------------ #
    # Hooks
    # ------------------------------------------------------------------ #

    async def on_request(self, ctx: RequestContext) -> None:
        if not self.applies_to(ctx) or C.HEADER_XSRF_TOKEN in ctx.headers:
            return
        token = await self._resolve_token()
        if token:
            ctx.headers[C.HEADER_XSRF_TOKEN] = token
        else:
            self._logger.warning(f"no XSRF token available for {ctx.method} {ctx.path}")

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> None:
        header = response.headers.get(C.HEADER_XSRF_TOKEN)
        if header:
            self._context.update(header)

    async def on_error(
        self, ctx: RequestContext, failure: RequestFailure, dispatch: Dispatch
    ) -> ErrorOutcome:
        if not self._config.uses_csrf or not is_csrf_failure(failure):
            return failure
        if ctx.extras.get("csrf_retried"):
            self._logger.warning(f"CSRF mismatch persists for {ctx.method} {ctx.path}")
            return failure

        ctx.extras["csrf_retried"] = True
        self._logger.debug(f"CSRF mismatch on {ctx.method} {ctx.path}, refreshing token")
        self._context.clear()
        if not await self._bootstrap():
            return failure
        token = self._cookies.get_csrf_token()
        if not token:
            return failure
        self._context.update(token)
        ctx.headers[C.HEADER_XSRF_TOKEN] = token
        try:
            return await dispatch(ctx)
        except RequestFailure as retry_failure:
            return retry_failure

    # ------------------------------------------------------------------ #
    # Token resolution
    # ------------------------------------------------------------------ #

    async def _resolve_token(self) -> Optional[str]:
        if self._context.token:
            return self._context.token
        token = self._cookies.get_csrf_token()
        if token is None and await self._bootstrap():
            token = self._cookies.get_csrf_token()
        if token:
            self._context.update(token)
        return token

    async def _bootstrap(self) -> bool:
        """Fetch a fresh XSRF cookie.  Returns ``False`` if the call failed."""
        if self._bootstrap_task is None or self._bootstrap_task.done():
            self._context.refresh_count += 1
            self._bootstrap_task = asyncio.ensure_future(self._cookies.fetch_csrf_cookie())
        try:
            await asyncio.shield(self._bootstrap_task)
        except SanctumError as exc:
            self._logger.warning(f"CSRF cookie bootstrap failed: {exc.message}")
            return False
        return True
