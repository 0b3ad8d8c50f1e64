"""Token stage: bearer injection, token rotation headers, expiry detection."""

from __future__ import annotations

from typing import Awaitable, Optional, Protocol, TypeVar

import httpx

from sanctum_auth import constants as C
from sanctum_auth.auth.credential_store import CredentialStore
from sanctum_auth.client.pipeline import (
    Dispatch,
    ErrorOutcome,
    Middleware,
    RequestContext,
    indicates_token_expiry,
)
from sanctum_auth.client.transport import RequestFailure
from sanctum_auth.logger import SanctumLogger, mask_value
from sanctum_auth.models import SanctumConfig

T = TypeVar("T")


class TokenExpiryHandler(Protocol):
    """Notified when the backend rejects or replaces the bearer token."""

    async def handle_token_expired(self) -> None: ...

    async def handle_token_rotated(self, token: str) -> None: ...


def is_valid_token_format(token: str) -> bool:
    """Check the ``<numeric id>|<hash>`` shape of a personal access token.

    Tokens without a ``|`` are accepted when they are at least ten
    characters long and contain no whitespace, for backends that issue
    plain opaque tokens.
    """
    if not token or any(ch.isspace() for ch in token):
        return False
    if "|" in token:
        token_id, _, secret = token.partition("|")
        return token_id.isdigit() and bool(secret)
    return len(token) >= 10


class TokenMiddleware(Middleware):
    """Injects ``Authorization: Bearer <token>`` in ``api`` and ``hybrid`` modes.

    A stored token with a malformed shape is purged instead of sent.  On a
    401 whose body mentions an expired or invalid token, the stored token
    is removed and the expiry handler is notified.  Credential store
    failures are logged and never leave the stage.

    Args:
        config: Engine configuration.
        store: Credential store holding the bearer token.
        expiry_handler: Receives expiry notifications (the engine).
        logger: Diagnostics sink.
    """

    name = "token"

    def __init__(
        self,
        config: SanctumConfig,
        store: CredentialStore,
        expiry_handler: TokenExpiryHandler,
        logger: SanctumLogger,
    ) -> None:
        self._config = config
        self._store = store
        self._expiry_handler = expiry_handler
        self._logger = logger

    async def on_request(self, ctx: RequestContext) -> None:
        if not self._config.uses_tokens or C.HEADER_AUTHORIZATION in ctx.headers:
            return
        token = await self._guarded("read the token", self._store.get_token())
        if not token:
            return
        if not is_valid_token_format(token):
            self._logger.warning(f"purging malformed stored token {mask_value(token)}")
            await self._guarded("delete the malformed token", self._store.delete_token())
            return
        ctx.headers[C.HEADER_AUTHORIZATION] = f"{C.BEARER_PREFIX}{token}"

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> None:
        new_token = response.headers.get(C.HEADER_NEW_TOKEN)
        if new_token and is_valid_token_format(new_token):
            await self._guarded("store the rotated token", self._store.set_token(new_token))
            await self._expiry_handler.handle_token_rotated(new_token)
            self._logger.log_token_operation("rotated")

        expires_in = response.headers.get(C.HEADER_TOKEN_EXPIRES_IN)
        if expires_in and expires_in.strip().isdigit():
            seconds = int(expires_in.strip())
            if seconds < C.TOKEN_EXPIRY_WARNING_SECONDS:
                self._logger.warning(f"access token expires in {seconds}s")

    async def on_error(
        self, ctx: RequestContext, failure: RequestFailure, dispatch: Dispatch
    ) -> ErrorOutcome:
        status = failure.status_code
        if status == C.STATUS_UNAUTHORIZED:
            if self._config.uses_tokens and indicates_token_expiry(failure.body_message()):
                self._logger.warning(f"token rejected on {ctx.method} {ctx.path}")
                await self._guarded("delete the rejected token", self._store.delete_token())
                await self._expiry_handler.handle_token_expired()
        elif status == C.STATUS_FORBIDDEN:
            self._logger.warning(f"forbidden: {ctx.method} {ctx.path}")
        elif status == C.STATUS_CSRF_MISMATCH:
            self._logger.debug(f"CSRF mismatch reported on {ctx.method} {ctx.path}")
        return failure

    async def _guarded(self, action: str, operation: Awaitable[T]) -> Optional[T]:
        try:
            return await operation
        except Exception as exc:
            self._logger.error(f"credential store failed to {action}", error=exc)
            return None
