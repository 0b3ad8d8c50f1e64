"""Request pipeline: middleware chain, dispatch, and error mapping.

A request travels through the chain in a fixed order::

    on_request:   Retry -> CSRF -> Token -> Diagnostics -> dispatch
    on_response:  Diagnostics -> Token -> CSRF -> Retry
    on_error:     Diagnostics -> Token -> CSRF -> Retry

so Retry sees a failure only after every inner stage has reacted to it.
A stage's ``on_error`` returns either the (possibly replaced) failure or a
response that resolves the request.  Stages that re-send a request call the
``dispatch`` callable they are handed, which goes straight to the
transport without re-entering the chain.

Failures still unresolved at the end of the chain are mapped to
:class:`~sanctum_auth.exceptions.SanctumError` by :func:`map_failure`; no
transport exception type escapes :meth:`Pipeline.request`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from sanctum_auth import constants as C
from sanctum_auth.auth.cookies import CookieStore
from sanctum_auth.client.transport import (
    FailureKind,
    RequestFailure,
    Transport,
    response_json,
)
from sanctum_auth.exceptions import SanctumError
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import SanctumConfig
from sanctum_auth.resilience.pool import ConnectionPool
from sanctum_auth.resilience.retry import RequestKey, RetryPolicy


@dataclass
class RequestContext:
    """Mutable state of one logical request as it moves through the chain.

    Attributes:
        method: Upper-case HTTP method.
        path: Path relative to the base URL.
        key: Identity used for retry bookkeeping.
        headers: Outbound headers (case-insensitive); stages add to these.
        json: JSON body, if any.
        params: Query parameters, if any.
        extras: Per-request flags shared between stages (e.g. ``csrf_retried``).
        request: The last :class:`httpx.Request` actually sent.
        started_at: :func:`time.perf_counter` value when the request began.
    """

    method: str
    path: str
    key: RequestKey
    headers: httpx.Headers
    json: Any = None
    params: Optional[dict[str, Any]] = None
    extras: dict[str, Any] = field(default_factory=dict)
    request: Optional[httpx.Request] = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


Dispatch = Callable[[RequestContext], Awaitable[httpx.Response]]
ErrorOutcome = Union[httpx.Response, RequestFailure]


class Middleware:
    """Base class for pipeline stages.  Every hook defaults to a no-op."""

    name: str = "middleware"

    async def on_request(self, ctx: RequestContext) -> None:
        """Inspect or modify the outbound request."""

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> None:
        """React to a successful response."""

    async def on_error(
        self, ctx: RequestContext, failure: RequestFailure, dispatch: Dispatch
    ) -> ErrorOutcome:
        """React to a failure; return it (or a replacement) or a resolving response."""
        return failure


class Pipeline:
    """Runs requests through the middleware chain and the transport.

    Args:
        config: Engine configuration (default headers).
        transport: Sends built requests.
        cookies: Cookie jar consulted before and updated after each dispatch.
        pool: Bounds concurrent dispatches.
        retry_policy: Allocates request identities.
        logger: Diagnostics sink.
    """

    def __init__(
        self,
        config: SanctumConfig,
        transport: Transport,
        cookies: CookieStore,
        pool: ConnectionPool,
        retry_policy: RetryPolicy,
        logger: SanctumLogger,
    ) -> None:
        self._config = config
        self._transport = transport
        self._cookies = cookies
        self._pool = pool
        self._retry_policy = retry_policy
        self._logger = logger
        self._chain: list[Middleware] = []

    @property
    def middleware(self) -> list[Middleware]:
        return list(self._chain)

    def use(self, *middleware: Middleware) -> None:
        """Append stages to the chain, outermost first."""
        self._chain.extend(middleware)

    # ------------------------------------------------------------------ #
    # Public request API
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        extras: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request through the chain.

        Returns:
            The successful (status < 400) response.

        Raises:
            SanctumError: For every failure, mapped by :func:`map_failure`.
        """
        merged = httpx.Headers(self._config.request_headers())
        if headers:
            merged.update(headers)
        ctx = RequestContext(
            method=method.upper(),
            path=path,
            key=self._retry_policy.new_key(method, path),
            headers=merged,
            json=json,
            params=params,
            extras=dict(extras or {}),
        )

        for stage in self._chain:
            await stage.on_request(ctx)

        try:
            response = await self.dispatch(ctx)
        except RequestFailure as failure:
            outcome = await self._run_error_chain(ctx, failure)
            if isinstance(outcome, RequestFailure):
                raise map_failure(outcome) from outcome
            response = outcome

        for stage in reversed(self._chain):
            await stage.on_response(ctx, response)
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def aclose(self) -> None:
        await self._transport.aclose()

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    async def dispatch(self, ctx: RequestContext) -> httpx.Response:
        """Send *ctx* once, bypassing the chain.

        Cookies stored for the target host are attached, and ``Set-Cookie``
        headers on the response are ingested, whatever the status.

        Raises:
            RequestFailure: On transport errors and on status >= 400.
        """
        request = self._transport.build_request(
            ctx.method, ctx.path, headers=dict(ctx.headers), json=ctx.json, params=ctx.params
        )
        host = request.url.host
        cookie_header = self._cookie_header(host)
        if cookie_header and "cookie" not in request.headers:
            request.headers["Cookie"] = cookie_header
        ctx.request = request

        async with self._pool.connection():
            response = await self._transport.send(request)

        set_cookies = response.headers.get_list("set-cookie")
        if set_cookies:
            self._cookies.ingest(host, set_cookies)
        if response.status_code >= 400:
            raise RequestFailure.from_response(response)
        return response

    async def _run_error_chain(self, ctx: RequestContext, failure: RequestFailure) -> ErrorOutcome:
        current = failure
        for stage in reversed(self._chain):
            outcome = await stage.on_error(ctx, current, self.dispatch)
            if isinstance(outcome, httpx.Response):
                return outcome
            current = outcome
        return current

    def _cookie_header(self, host: str) -> str:
        cookies = self._cookies.cookies_for(host)
        return "; ".join(f"{cookie.name}={cookie.value}" for cookie in cookies if cookie.value is not None)


# ------------------------------------------------------------------ #
# Failure classification and mapping
# ------------------------------------------------------------------ #


def indicates_token_expiry(message: str) -> bool:
    """True for 401 bodies such as ``"token expired"`` or ``"Invalid token"``."""
    lowered = message.lower()
    return "token" in lowered and ("expired" in lowered or "invalid" in lowered)


def is_csrf_failure(failure: RequestFailure) -> bool:
    """HTTP 419, or an error body that talks about a CSRF/page-expired mismatch."""
    if failure.kind is not FailureKind.BAD_RESPONSE:
        return False
    if failure.status_code == C.STATUS_CSRF_MISMATCH:
        return True
    lowered = failure.body_message().lower()
    return "csrf" in lowered or "token mismatch" in lowered or "page expired" in lowered


def map_failure(failure: RequestFailure) -> SanctumError:
    """Translate a transport or HTTP failure into the SDK error taxonomy."""
    kind = failure.kind
    if kind.is_timeout:
        return SanctumError.timeout(f"Request timed out ({kind.value})")
    if kind is FailureKind.CONNECTION:
        return SanctumError.connection_failed(failure.message)
    if kind is FailureKind.CANCELLED:
        return SanctumError.network("Request was cancelled", code=C.ERROR_CANCELLED)
    if kind is FailureKind.BAD_RESPONSE and failure.response is not None:
        return map_response_error(failure)
    return SanctumError.network(failure.message)


def map_response_error(failure: RequestFailure) -> SanctumError:
    response = failure.response
    if response is None:
        return SanctumError.network(failure.message)
    status = response.status_code
    body = response_json(response)
    message = failure.body_message()
    details: dict[str, Any] = {"url": str(response.request.url), "status_code": status}
    if body is not None:
        details["body"] = body

    if status == C.STATUS_UNAUTHORIZED:
        lowered = message.lower()
        if "token" in lowered and "expired" in lowered:
            return SanctumError.token_expired(details)
        if "token" in lowered and "invalid" in lowered:
            return SanctumError.token_invalid(details)
        if not message or "credential" in lowered:
            return SanctumError.invalid_credentials(details)
        return SanctumError.authentication(message, details=details)
    if status == C.STATUS_FORBIDDEN:
        return SanctumError.authorization(message or "This action is unauthorized", details=details)
    if is_csrf_failure(failure):
        return SanctumError.csrf(message or "CSRF token mismatch", details=details)
    if status == C.STATUS_VALIDATION_FAILED:
        return SanctumError.validation_from_response(body, status_code=status)
    if status == C.STATUS_RATE_LIMITED:
        return SanctumError.rate_limit_from_headers(response.headers, message or "Too many requests")
    if status >= 500:
        return SanctumError.server_error(status, message or f"Server error ({status})", details)
    return SanctumError.network(message or f"HTTP {status}", status_code=status, details=details)
