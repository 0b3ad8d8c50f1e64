"""Canonical Pydantic models shared across sanctum_auth.

This is the single source of truth for data shapes in the project.  The
models fall into two groups:

**Configuration models** -- the immutable settings an engine is built from:
    :class:`AuthMode`, :class:`Endpoints`, :class:`Timeouts`,
    :class:`CacheConfig`, :class:`RetryConfig`, and :class:`SanctumConfig`.

**Wire models** -- JSON documents exchanged with the backend:
    :class:`User`, :class:`LoginResponse`, :class:`RegisterResponse`,
    :class:`LogoutResponse`, :class:`Token`, :class:`TokenResponse`, and
    :class:`TokenStats`.

Wire models use ``extra="allow"`` so backend-specific keys (custom user
columns, extra response metadata) survive a round trip and are available
via ``model_extra``.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sanctum_auth import constants as C
from sanctum_auth.exceptions import SanctumError


# --- Enums ---


class AuthMode(str, enum.Enum):
    """How the client authenticates against the backend.

    ``api`` sends bearer tokens, ``spa`` relies on the session cookie plus
    an XSRF header, and ``hybrid`` does both.
    """

    API = "api"
    SPA = "spa"
    HYBRID = "hybrid"


class AuthState(str, enum.Enum):
    """Authentication state exposed by :class:`~sanctum_auth.auth.engine.SanctumAuth`."""

    VERIFYING = "verifying"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


# --- Configuration ---


class Endpoints(BaseModel):
    """Backend route table.  Paths are relative to :attr:`SanctumConfig.base_url`.

    The registration route is stored as ``register_path`` and serialized
    as ``register``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    login: str = C.ENDPOINT_LOGIN
    register_path: str = Field(default=C.ENDPOINT_REGISTER, alias="register")
    logout: str = C.ENDPOINT_LOGOUT
    user: str = C.ENDPOINT_USER
    create_token: str = C.ENDPOINT_CREATE_TOKEN
    csrf_cookie: str = C.ENDPOINT_CSRF_COOKIE
    revoke_tokens: str = C.ENDPOINT_REVOKE_TOKENS
    list_tokens: str = C.ENDPOINT_LIST_TOKENS
    refresh_token: str = C.ENDPOINT_REFRESH_TOKEN


class Timeouts(BaseModel):
    """Per-phase request timeouts in seconds."""

    model_config = ConfigDict(frozen=True)

    connect: float = Field(default=C.DEFAULT_CONNECT_TIMEOUT, gt=0)
    receive: float = Field(default=C.DEFAULT_RECEIVE_TIMEOUT, gt=0)
    send: float = Field(default=C.DEFAULT_SEND_TIMEOUT, gt=0)


class CacheConfig(BaseModel):
    """In-memory cache settings used by the resilience layer."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Enable response memoization")
    max_size: int = Field(default=C.DEFAULT_CACHE_MAX_SIZE, ge=1, description="Maximum entries")
    ttl: float = Field(default=C.DEFAULT_CACHE_TTL, gt=0, description="Default TTL in seconds")
    cache_user_data: bool = Field(default=True, description="Memoize the user-profile fetch")
    sweep_interval: float = Field(
        default=C.DEFAULT_CACHE_SWEEP_INTERVAL, gt=0, description="Seconds between expiry sweeps"
    )


class RetryConfig(BaseModel):
    """Exponential backoff settings for transient failures."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_retries: int = Field(default=C.DEFAULT_MAX_RETRIES, ge=0)
    initial_delay: float = Field(default=C.DEFAULT_INITIAL_RETRY_DELAY, ge=0)
    backoff_multiplier: float = Field(default=C.DEFAULT_BACKOFF_MULTIPLIER, ge=1.0)
    max_delay: float = Field(default=C.DEFAULT_MAX_RETRY_DELAY, ge=0)
    retryable_status_codes: frozenset[int] = C.DEFAULT_RETRYABLE_STATUS_CODES


class SanctumConfig(BaseModel):
    """Immutable engine configuration, validated at construction.

    An empty or malformed ``base_url`` raises a
    :class:`~sanctum_auth.exceptions.SanctumError` of kind
    ``CONFIGURATION`` straight from the constructor, before any network
    activity takes place.

    Example::

        config = SanctumConfig(
            base_url="https://api.example.com",
            auth_mode=AuthMode.HYBRID,
            retry_config=RetryConfig(max_retries=5),
        )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(description="Backend root URL, scheme and host required")
    auth_mode: AuthMode = AuthMode.API
    storage_key: str = Field(default=C.STORAGE_TOKEN, min_length=1)
    endpoints: Endpoints = Field(default_factory=Endpoints)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    cache_config: CacheConfig = Field(default_factory=CacheConfig)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    debug_mode: bool = False
    default_headers: dict[str, str] = Field(default_factory=dict)
    auto_refresh_tokens: bool = True
    stateful_domains: list[str] = Field(default_factory=list)
    max_connections: int = Field(default=C.DEFAULT_MAX_CONNECTIONS, ge=1)

    @field_validator("base_url", mode="before")
    @classmethod
    def _check_base_url(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise SanctumError.configuration("Base URL cannot be empty")
        url = value.strip()
        if not C.URL_PATTERN.match(url):
            raise SanctumError.invalid_base_url(url)
        return url.rstrip("/")

    @property
    def host(self) -> str:
        """Host name of :attr:`base_url`, lower-cased."""
        return (urlsplit(self.base_url).hostname or "").lower()

    @property
    def uses_tokens(self) -> bool:
        """Bearer tokens are injected in ``api`` and ``hybrid`` modes."""
        return self.auth_mode in (AuthMode.API, AuthMode.HYBRID)

    @property
    def uses_csrf(self) -> bool:
        """XSRF headers are attached in ``spa`` and ``hybrid`` modes."""
        return self.auth_mode in (AuthMode.SPA, AuthMode.HYBRID)

    @property
    def is_spa_mode(self) -> bool:
        return self.auth_mode is AuthMode.SPA

    def request_headers(self) -> dict[str, str]:
        """Default headers merged with :attr:`default_headers`."""
        headers = dict(C.DEFAULT_HEADERS)
        headers.update(self.default_headers)
        return headers


# --- Wire models ---


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(BaseModel):
    """An authenticated user record.

    Only the columns of Laravel's default ``users`` table are declared;
    anything else the backend returns is kept in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    email: Optional[str] = None
    email_verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_email_verified(self) -> bool:
        return self.email_verified_at is not None

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a declared or custom field by name."""
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key, default)


class LoginResponse(BaseModel):
    """Body returned by the login endpoint."""

    model_config = ConfigDict(extra="allow")

    user: User
    token: str
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    abilities: Optional[list[str]] = None
    refresh_token: Optional[str] = None


class RegisterResponse(BaseModel):
    """Body returned by the register endpoint.

    ``token`` may be absent when the backend requires e-mail verification
    before issuing credentials.
    """

    model_config = ConfigDict(extra="allow")

    user: User
    token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    abilities: Optional[list[str]] = None
    refresh_token: Optional[str] = None
    email_verification_required: bool = False


class LogoutResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str = "Logged out"


class Token(BaseModel):
    """A personal access token as listed by the backend."""

    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    name: str = ""
    token: Optional[str] = None
    abilities: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) >= _as_utc(self.expires_at)

    @property
    def will_expire_soon(self) -> bool:
        """True when the token expires within the next 24 hours."""
        if self.expires_at is None or self.is_expired:
            return False
        return _as_utc(self.expires_at) - datetime.now(timezone.utc) <= timedelta(hours=24)

    @property
    def token_id(self) -> Optional[int]:
        """Numeric id encoded in a ``<id>|<hash>`` plain-text token."""
        if not self.token or "|" not in self.token:
            return None
        head = self.token.split("|", 1)[0]
        return int(head) if head.isdigit() else None

    def can(self, ability: str) -> bool:
        return "*" in self.abilities or ability in self.abilities


class TokenResponse(BaseModel):
    """Body returned when a new personal access token is created."""

    model_config = ConfigDict(extra="allow")

    token: str
    access_token: Optional[Token] = None
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.token}"


class TokenStats(BaseModel):
    """Aggregate view over the user's tokens."""

    total_count: int = 0
    active_count: int = 0
    expired_count: int = 0
    expiring_soon_count: int = 0
    ability_counts: dict[str, int] = Field(default_factory=dict)
