"""The authentication engine: session state machine and public auth API.

:class:`SanctumAuth` owns the configuration, the request pipeline, the
credential and cookie stores, and the authentication state.  The state
starts as ``VERIFYING`` and settles exactly once during initialization::

    VERIFYING --(no token | restore failed)--> UNAUTHENTICATED
    VERIFYING --(token + user restored)------> AUTHENTICATED
    UNAUTHENTICATED --login/register--------> AUTHENTICATED
    AUTHENTICATED --logout | token expired--> UNAUTHENTICATED

Example::

    config = SanctumConfig(base_url="https://api.example.com")
    async with SanctumAuth(config) as auth:
        await auth.login("a@b.com", "secret", device_name="laptop")
        profile = await auth.user()
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from sanctum_auth.auth.cookies import CookieManager, CookieStore, HttpxCookieStore
from sanctum_auth.auth.credential_store import CredentialStore, MemoryCredentialStore, StorageKeys
from sanctum_auth.auth.tokens import TokenManager
from sanctum_auth.client.pipeline import Pipeline
from sanctum_auth.client.transport import HttpxTransport, Transport, response_json
from sanctum_auth.exceptions import ErrorKind, SanctumError
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.middleware.csrf import CsrfContext, CsrfMiddleware
from sanctum_auth.middleware.diagnostics import DiagnosticsMiddleware
from sanctum_auth.middleware.retry import RetryMiddleware
from sanctum_auth.middleware.token import TokenMiddleware
from sanctum_auth.models import (
    AuthState,
    LoginResponse,
    LogoutResponse,
    RegisterResponse,
    SanctumConfig,
    User,
)
from sanctum_auth.resilience.performance import Performance
from sanctum_auth.resilience.retry import RetryPolicy
from sanctum_auth.state import StateCell

M = TypeVar("M", bound=BaseModel)

_USER_CACHE_KEY = "user"


class SanctumAuth:
    """Client for a Laravel Sanctum backend.

    Construction validates nothing beyond what :class:`SanctumConfig`
    already validated and performs no I/O.  Initialization (restoring a
    stored session) runs once: it is scheduled immediately when an event
    loop is running, and every public operation awaits it.

    Args:
        config: Engine configuration.
        store: Credential store; defaults to an in-memory store keyed by
            ``config.storage_key``.
        cookie_store: Cookie jar; defaults to a fresh :class:`HttpxCookieStore`.
        logger: Diagnostics sink; defaults to one honouring ``config.debug_mode``.
        transport: Replaces the HTTP transport entirely.
        http_transport: Inner httpx transport for the default transport
            (e.g. :class:`httpx.MockTransport` in tests).
        retry_policy: Replaces the policy built from ``config.retry_config``.
        sleep: Awaitable used for retry back-off delays.
    """

    def __init__(
        self,
        config: SanctumConfig,
        *,
        store: Optional[CredentialStore] = None,
        cookie_store: Optional[CookieStore] = None,
        logger: Optional[SanctumLogger] = None,
        transport: Optional[Transport] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._logger = logger or SanctumLogger(debug_mode=config.debug_mode)
        self._store = store or MemoryCredentialStore(StorageKeys.for_key(config.storage_key))
        self._cookie_store = cookie_store or HttpxCookieStore()

        self._performance = Performance(config.cache_config, config.max_connections, self._logger)
        self._retry_policy = retry_policy or RetryPolicy(config.retry_config)
        self._pipeline = Pipeline(
            config,
            transport or HttpxTransport(config, inner=http_transport),
            self._cookie_store,
            self._performance.pool,
            self._retry_policy,
            self._logger,
        )
        self._cookies = CookieManager(
            config, self._cookie_store, self._logger, requester=self._pipeline.request
        )
        self._csrf_context = CsrfContext()
        self._pipeline.use(
            RetryMiddleware(self._retry_policy, self._logger, sleep=sleep),
            CsrfMiddleware(config, self._cookies, self._csrf_context, self._logger),
            TokenMiddleware(config, self._store, self, self._logger),
        )
        if config.debug_mode:
            self._pipeline.use(DiagnosticsMiddleware(self._logger))

        self.tokens = TokenManager(self._pipeline, config, self._logger)

        self._state: StateCell[AuthState] = StateCell(AuthState.VERIFYING, self._logger)
        self._token: Optional[str] = None
        self._user: Optional[User] = None
        self._abilities: Optional[list[str]] = None
        self._session_lock = asyncio.Lock()
        self._session_generation = 0
        self._expiry_in_progress = False
        self._init_task: Optional[asyncio.Future] = None

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self._start_initialization()

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> SanctumAuth:
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop background work, close the transport, and end state streams."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._init_task
        await self._performance.aclose()
        await self._pipeline.aclose()
        self._state.close()

    # ------------------------------------------------------------------ #
    # Initialization
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        """Restore the stored session.  Safe to call repeatedly and concurrently."""
        if self._init_task is None:
            self._start_initialization()
        await asyncio.shield(self._init_task)

    def _start_initialization(self) -> None:
        self._init_task = asyncio.ensure_future(self._initialize())
        self._init_task.add_done_callback(_consume_init_failure)

    async def _initialize(self) -> None:
        self._performance.start()
        try:
            token = await self._store.get_token()
            if not token:
                self._logger.log_auth_event("restore", details={"result": "no stored token"})
                self._state.set(AuthState.UNAUTHENTICATED)
                return

            user = await self._store.get_user()
            abilities = await self._store.get_abilities()
            if user is not None:
                self._set_session(token, user, abilities)
                self._logger.log_auth_event("restore", user_id=user.id)
                return

            try:
                user = await self._fetch_user()
            except SanctumError as exc:
                self._logger.warning(f"stored token rejected during restore: {exc.message}")
                await self._purge_session()
                return
            await self._store.set_user(user)
            self._set_session(token, user, abilities)
            self._logger.log_auth_event("restore", user_id=user.id, details={"fetched": True})
        except Exception as exc:
            self._logger.error("session restore failed", error=exc)
            self._state.set(AuthState.UNAUTHENTICATED)
            raise

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> SanctumConfig:
        return self._config

    @property
    def auth_state(self) -> AuthState:
        return self._state.value

    @property
    def is_authenticated(self) -> bool:
        return self._state.value is AuthState.AUTHENTICATED

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    @property
    def current_token(self) -> Optional[str]:
        return self._token

    @property
    def state_stream(self) -> StateCell[AuthState]:
        return self._state

    def abilities(self) -> list[str]:
        """Abilities recorded for the current token (empty when unknown)."""
        return list(self._abilities or [])

    def subscribe(self, listener: Callable[[AuthState], None]) -> Callable[[], None]:
        """Call *listener* with the current state now and with every later change.

        Returns:
            A callable that removes the listener.
        """
        return self._state.subscribe(listener)

    def states(self) -> AsyncIterator[AuthState]:
        """Iterate the current state, then every transition, until :meth:`aclose`."""
        return self._state.stream()

    # ------------------------------------------------------------------ #
    # Collaborators
    # ------------------------------------------------------------------ #

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def cookies(self) -> CookieManager:
        return self._cookies

    @property
    def csrf_context(self) -> CsrfContext:
        return self._csrf_context

    @property
    def pipeline(self) -> Pipeline:
        return self._pipeline

    @property
    def performance(self) -> Performance:
        return self._performance

    @property
    def logger(self) -> SanctumLogger:
        return self._logger

    # ------------------------------------------------------------------ #
    # Authentication operations
    # ------------------------------------------------------------------ #

    async def login(
        self,
        email: str,
        password: str,
        device_name: str,
        abilities: Optional[Iterable[str]] = None,
        remember: bool = False,
    ) -> LoginResponse:
        """Authenticate with email and password and start a session.

        Args:
            email: Account email.
            password: Account password.
            device_name: Name recorded on the issued token.
            abilities: Abilities to request; defaults to ``["*"]``.
            remember: Ask the backend for a long-lived session.

        Returns:
            The parsed login response.

        Raises:
            SanctumError: ``VALIDATION`` for empty fields (no request is
                made), otherwise whatever the backend call maps to.  The
                state is left unchanged on failure.
        """
        _require_fields(email=email, password=password, device_name=device_name)
        requested = list(abilities) if abilities is not None else ["*"]
        await self._ensure_initialized()

        async def operation() -> LoginResponse:
            self._logger.log_auth_event("login attempt", details={"device_name": device_name})
            if self._config.uses_csrf:
                await self._cookies.fetch_csrf_cookie()
            payload: dict[str, Any] = {
                "email": email,
                "password": password,
                "device_name": device_name,
            }
            if requested:
                payload["abilities"] = requested
            if remember:
                payload["remember"] = True
            try:
                response = await self._pipeline.post(self._config.endpoints.login, json=payload)
            except SanctumError as exc:
                self._logger.log_auth_event("login failed", details={"error": exc.code})
                raise
            result = _parse(LoginResponse, response_json(response), "login")
            await self._establish_session(
                result.token,
                result.user,
                result.abilities if result.abilities is not None else requested,
                result.refresh_token,
            )
            self._logger.log_auth_event("login", user_id=result.user.id)
            return result

        return await self._performance.measure_operation("login", operation)

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str,
        device_name: str,
        abilities: Optional[Iterable[str]] = None,
        additional_fields: Optional[Mapping[str, Any]] = None,
    ) -> RegisterResponse:
        """Create an account.  The session starts when the backend returns a token.

        Backends that require email verification return the user without a
        token; the state then stays as it was.
        """
        _require_fields(
            name=name,
            email=email,
            password=password,
            password_confirmation=password_confirmation,
            device_name=device_name,
        )
        requested = list(abilities) if abilities is not None else ["*"]
        await self._ensure_initialized()

        async def operation() -> RegisterResponse:
            self._logger.log_auth_event("register attempt", details={"device_name": device_name})
            if self._config.uses_csrf:
                await self._cookies.fetch_csrf_cookie()
            payload: dict[str, Any] = {
                "name": name,
                "email": email,
                "password": password,
                "password_confirmation": password_confirmation,
                "device_name": device_name,
            }
            if requested:
                payload["abilities"] = requested
            payload.update(additional_fields or {})
            response = await self._pipeline.post(self._config.endpoints.register_path, json=payload)
            result = _parse(RegisterResponse, response_json(response), "register")
            if result.token:
                await self._establish_session(
                    result.token,
                    result.user,
                    result.abilities if result.abilities is not None else requested,
                    result.refresh_token,
                )
            self._logger.log_auth_event(
                "register",
                user_id=result.user.id,
                details={"verification_required": result.email_verification_required},
            )
            return result

        return await self._performance.measure_operation("register", operation)

    async def logout(self) -> LogoutResponse:
        """End the session on the backend and locally.

        Local credentials are cleared and the state becomes
        ``UNAUTHENTICATED`` even when the backend call fails; the failure
        is then re-raised.

        Raises:
            SanctumError: ``AUTHENTICATION`` if no session is active, or the
                mapped backend failure.
        """
        await self._ensure_initialized()
        if not self.is_authenticated:
            raise SanctumError.not_authenticated("No authenticated user to log out")

        async def operation() -> LogoutResponse:
            user_id = self._user.id if self._user is not None else None
            self._logger.log_auth_event("logout attempt", user_id=user_id)
            failure: Optional[SanctumError] = None
            result = LogoutResponse()
            try:
                response = await self._pipeline.post(self._config.endpoints.logout)
                body = response_json(response)
                if isinstance(body, dict):
                    result = _parse(LogoutResponse, body, "logout")
            except SanctumError as exc:
                failure = exc
            await self._purge_session()
            if failure is not None:
                self._logger.log_auth_event("logout failed", details={"error": failure.code})
                raise failure
            self._logger.log_auth_event("logout", user_id=user_id)
            return result

        return await self._performance.measure_operation("logout", operation)

    async def user(self, force_refresh: bool = False) -> User:
        """The authenticated user, fetched from the backend when forced or unknown."""
        await self._ensure_initialized()
        if not self.is_authenticated:
            raise SanctumError.not_authenticated()
        if not force_refresh and self._user is not None:
            return self._user

        generation = self._session_generation

        async def operation() -> User:
            if self._config.cache_config.cache_user_data:
                user = await self._performance.cached(
                    _USER_CACHE_KEY, self._fetch_user, force_refresh=force_refresh
                )
            else:
                user = await self._fetch_user()
            async with self._session_lock:
                if not self._session_unchanged(generation):
                    self._performance.cache.delete(_USER_CACHE_KEY)
                    raise SanctumError.not_authenticated("Session ended while fetching the user")
                await self._store.set_user(user)
                self._user = user
            return user

        return await self._performance.measure_operation("fetch_user", operation)

    async def _fetch_user(self) -> User:
        response = await self._pipeline.get(self._config.endpoints.user)
        body = response_json(response)
        if isinstance(body, dict):
            nested = body.get("user", body.get("data"))
            if isinstance(nested, dict):
                body = nested
        return _parse(User, body, "user")

    async def refresh_token(self) -> str:
        """Exchange the stored refresh token for a new access token.

        The state does not change, on success or on failure.

        Returns:
            The new access token.

        Raises:
            SanctumError: ``AUTHENTICATION`` without a session, ``TOKEN``
                when no refresh token is stored or the exchange fails.
        """
        await self._ensure_initialized()
        return await self._performance.measure_operation("refresh_token", self._refresh_token)

    async def _refresh_token(self) -> str:
        if not self.is_authenticated:
            raise SanctumError.not_authenticated("No authenticated user to refresh token for")
        generation = self._session_generation
        refresh_token = await self._store.get_refresh_token()
        if not refresh_token:
            raise SanctumError.token("No refresh token available", status_code=401)

        try:
            response = await self._pipeline.post(
                self._config.endpoints.refresh_token, json={"refresh_token": refresh_token}
            )
        except SanctumError as exc:
            self._logger.log_token_operation("refresh failed")
            if exc.kind is ErrorKind.TOKEN:
                raise
            raise SanctumError.token(
                f"Token refresh failed: {exc.message}",
                status_code=exc.status_code,
                details={"cause": exc.to_dict()},
            ) from exc

        body = response_json(response)
        body = body if isinstance(body, dict) else {}
        new_token = body.get("token") or body.get("access_token")
        if not isinstance(new_token, str) or not new_token:
            raise SanctumError.token("Refresh response did not contain a token")
        new_refresh = body.get("refresh_token")

        async with self._session_lock:
            if not self._session_unchanged(generation):
                raise SanctumError.not_authenticated("Session ended while refreshing the token")
            keys = self._store.keys
            updates: dict[str, Optional[str]] = {keys.token: new_token}
            if isinstance(new_refresh, str) and new_refresh:
                updates[keys.refresh_token] = new_refresh
            await self._store.set_many(updates)
            self._token = new_token
        self._logger.log_token_operation("refreshed")
        return new_token

    # ------------------------------------------------------------------ #
    # Token events (called by the token stage)
    # ------------------------------------------------------------------ #

    async def handle_token_expired(self) -> None:
        """React to the backend rejecting the bearer token.

        With ``auto_refresh_tokens`` one refresh is attempted; if it is
        disabled or fails, the session is purged.  Re-entrant calls made
        while this runs (e.g. the refresh call itself being rejected) are
        ignored.
        """
        if self._expiry_in_progress:
            return
        self._expiry_in_progress = True
        try:
            if self._config.auto_refresh_tokens and self.is_authenticated:
                try:
                    await self._refresh_token()
                    return
                except SanctumError as exc:
                    self._logger.warning(f"automatic token refresh failed: {exc.message}")
            self._logger.log_auth_event("token expired")
            await self._purge_session()
        finally:
            self._expiry_in_progress = False

    async def handle_token_rotated(self, token: str) -> None:
        """Adopt a token the backend issued in place of the current one."""
        if self.is_authenticated:
            self._token = token

    # ------------------------------------------------------------------ #
    # Abilities
    # ------------------------------------------------------------------ #

    def has_ability(self, ability: str) -> bool:
        """Whether the current token grants *ability*.

        Always ``False`` without a session.  A token with no recorded
        abilities, or with ``*``, grants everything.
        """
        if not self.is_authenticated:
            return False
        if not self._abilities:
            return True
        return "*" in self._abilities or ability in self._abilities

    def has_any_ability(self, abilities: Iterable[str]) -> bool:
        return any(self.has_ability(ability) for ability in abilities)

    def has_all_abilities(self, abilities: Iterable[str]) -> bool:
        if not self.is_authenticated:
            return False
        return all(self.has_ability(ability) for ability in abilities)

    def require_abilities(self, *abilities: str) -> None:
        """Raise ``AUTHORIZATION`` unless every ability in *abilities* is granted."""
        if not self.is_authenticated:
            raise SanctumError.not_authenticated()
        missing = [ability for ability in abilities if not self.has_ability(ability)]
        if missing:
            raise SanctumError.insufficient_abilities(missing, self.abilities())

    # ------------------------------------------------------------------ #
    # Authenticated requests
    # ------------------------------------------------------------------ #

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send an arbitrary request through the pipeline."""
        await self._ensure_initialized()
        return await self._pipeline.request(method, path, **kwargs)

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

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def performance_stats(self) -> dict[str, Any]:
        stats = self._performance.stats()
        stats["retry"] = self._retry_policy.stats()
        stats["csrf"] = self._csrf_context.stats()
        stats["cookies"] = self._cookies.stats()
        return stats

    def retry_stats(self) -> dict[str, Any]:
        return self._retry_policy.stats()

    # ------------------------------------------------------------------ #
    # Session bookkeeping
    # ------------------------------------------------------------------ #

    async def _ensure_initialized(self) -> None:
        if self._init_task is None or not self._init_task.done():
            await self.initialize()

    def _session_unchanged(self, generation: int) -> bool:
        """True while the session observed at *generation* is still the live one."""
        return generation == self._session_generation and self.is_authenticated

    def _set_session(self, token: str, user: User, abilities: Optional[list[str]]) -> None:
        self._token = token
        self._user = user
        self._abilities = abilities
        self._state.set(AuthState.AUTHENTICATED)

    async def _establish_session(
        self,
        token: str,
        user: User,
        abilities: Optional[list[str]],
        refresh_token: Optional[str],
    ) -> None:
        async with self._session_lock:
            self._session_generation += 1
            await self._store.store_session(token, user, abilities, refresh_token)
            if self._config.cache_config.cache_user_data:
                self._performance.cache.set(_USER_CACHE_KEY, user)
            self._set_session(token, user, abilities)

    async def _purge_session(self) -> None:
        async with self._session_lock:
            self._session_generation += 1
            try:
                await self._store.clear_session()
            finally:
                self._token = None
                self._user = None
                self._abilities = None
                self._performance.cache.delete(_USER_CACHE_KEY)
                self._csrf_context.clear()
                if self._config.uses_csrf:
                    self._cookies.clear_auth_cookies()
                self._state.set(AuthState.UNAUTHENTICATED)


def _consume_init_failure(task: asyncio.Future) -> None:
    # _initialize logs its own failure; reading it here marks it retrieved.
    if not task.cancelled():
        task.exception()

def _require_fields(**fields: str) -> None:
    errors = {
        name: [f"The {name.replace('_', ' ')} field is required."]
        for name, value in fields.items()
        if not value or not str(value).strip()
    }
    if errors:
        raise SanctumError.validation(errors, status_code=None)


def _parse(model: type[M], data: Any, operation: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise SanctumError(
            ErrorKind.AUTHENTICATION, f"Unexpected response to {operation}: {exc}", details={"body": data}
        ) from exc
