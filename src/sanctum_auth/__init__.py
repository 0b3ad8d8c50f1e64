"""sanctum_auth -- asynchronous client SDK for Laravel Sanctum backends.

Handles bearer-token (``api``), cookie-session (``spa``) and combined
(``hybrid``) authentication against a Sanctum-protected API: login,
registration, logout, session restore, token refresh and ability checks,
with CSRF handling, retries with backoff, and response caching built into
the request pipeline.

Typical use::

    from sanctum_auth import SanctumAuth, SanctumConfig

    async with SanctumAuth(SanctumConfig(base_url="https://api.example.com")) as auth:
        await auth.login("a@b.com", "secret", device_name="laptop")
        response = await auth.get("/api/projects")

Modules:
    models: Pydantic configuration and wire models.
    exceptions: The :class:`SanctumError` taxonomy.
    logger: Injected Rich-backed logger with secret masking.
    state: Observable current-value cell used for the auth state.
    resilience: Cache, retry policy, metrics, connection accounting.
    client: httpx transport and the middleware pipeline.
    middleware: Retry, CSRF, token and diagnostics stages.
    auth: Credential/cookie stores, the engine, and token management.
"""

from sanctum_auth.exceptions import ErrorKind, SanctumError
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import (
    AuthMode,
    AuthState,
    CacheConfig,
    Endpoints,
    LoginResponse,
    LogoutResponse,
    RegisterResponse,
    RetryConfig,
    SanctumConfig,
    Timeouts,
    Token,
    TokenResponse,
    TokenStats,
    User,
)
from sanctum_auth.auth import (
    CookieManager,
    CookieStore,
    CredentialStore,
    FileCredentialStore,
    HttpxCookieStore,
    MemoryCredentialStore,
    StorageKeys,
)
from sanctum_auth.auth.tokens import TokenManager
from sanctum_auth.auth.engine import SanctumAuth

__version__ = "0.1.0"

__all__ = [
    "AuthMode",
    "AuthState",
    "CacheConfig",
    "CookieManager",
    "CookieStore",
    "CredentialStore",
    "Endpoints",
    "ErrorKind",
    "FileCredentialStore",
    "HttpxCookieStore",
    "LoginResponse",
    "LogoutResponse",
    "MemoryCredentialStore",
    "RegisterResponse",
    "RetryConfig",
    "SanctumAuth",
    "SanctumConfig",
    "SanctumError",
    "SanctumLogger",
    "StorageKeys",
    "Timeouts",
    "Token",
    "TokenManager",
    "TokenResponse",
    "TokenStats",
    "User",
]
