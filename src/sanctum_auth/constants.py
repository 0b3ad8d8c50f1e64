"""Protocol constants and documented defaults for the Sanctum client.

Endpoint paths, header and cookie names, and storage keys follow the
conventions of a stock Laravel Sanctum backend.  Every value here can be
overridden through :class:`~sanctum_auth.models.SanctumConfig`; these are
only the defaults it starts from.

Example::

    from sanctum_auth.constants import HEADER_XSRF_TOKEN

    headers[HEADER_XSRF_TOKEN] = token
"""

from __future__ import annotations

import re

USER_AGENT = "sanctum-auth-python/0.1.0"
"""Default ``User-Agent`` sent with every request."""

# --- Endpoints ---

ENDPOINT_LOGIN = "/login"
ENDPOINT_REGISTER = "/register"
ENDPOINT_LOGOUT = "/logout"
ENDPOINT_USER = "/api/user"
ENDPOINT_CREATE_TOKEN = "/sanctum/token"
ENDPOINT_CSRF_COOKIE = "/sanctum/csrf-cookie"
ENDPOINT_REVOKE_TOKENS = "/api/tokens/revoke"
ENDPOINT_LIST_TOKENS = "/api/tokens"
ENDPOINT_REFRESH_TOKEN = "/api/refresh"

# --- Headers ---

HEADER_AUTHORIZATION = "Authorization"
HEADER_XSRF_TOKEN = "X-XSRF-TOKEN"
HEADER_CSRF_TOKEN = "X-CSRF-TOKEN"
HEADER_REQUESTED_WITH = "X-Requested-With"
HEADER_NEW_TOKEN = "X-New-Token"
HEADER_TOKEN_EXPIRES_IN = "X-Token-Expires-In"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"

BEARER_PREFIX = "Bearer "
"""Prefix of the outbound ``Authorization`` header value."""

DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    HEADER_REQUESTED_WITH: "XMLHttpRequest",
    "User-Agent": USER_AGENT,
}

# --- Cookies ---

COOKIE_XSRF_TOKEN = "XSRF-TOKEN"
COOKIE_SESSION = "laravel_session"

# --- Storage keys ---

STORAGE_TOKEN = "sanctum_auth_token"
STORAGE_USER = "sanctum_user_data"
STORAGE_REFRESH_TOKEN = "sanctum_refresh_token"
STORAGE_ABILITIES = "sanctum_token_abilities"

# --- Timeouts and limits (seconds) ---

DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_RECEIVE_TIMEOUT = 30.0
DEFAULT_SEND_TIMEOUT = 30.0

DEFAULT_CACHE_TTL = 300.0
DEFAULT_CACHE_MAX_SIZE = 100
DEFAULT_CACHE_SWEEP_INTERVAL = 60.0

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_RETRY_DELAY = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRY_DELAY = 30.0
DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

RETRY_JITTER = 0.25
"""Fraction of the computed delay used as the +/- jitter range."""

DEFAULT_MAX_CONNECTIONS = 5
METRICS_WINDOW = 1000
"""Number of duration samples kept per operation."""

SLOW_OPERATION_MS = 1000.0
TOKEN_EXPIRY_WARNING_SECONDS = 3600

# --- HTTP status codes with protocol meaning ---

STATUS_UNAUTHORIZED = 401
STATUS_FORBIDDEN = 403
STATUS_CSRF_MISMATCH = 419
STATUS_VALIDATION_FAILED = 422
STATUS_RATE_LIMITED = 429

STATEFUL_METHODS: frozenset[str] = frozenset(
    {"POST", "PUT", "PATCH", "DELETE", "CONNECT", "OPTIONS", "TRACE"}
)
"""HTTP methods that require an XSRF header in cookie-session mode."""

# --- Error codes ---

ERROR_INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
ERROR_TOKEN_EXPIRED = "TOKEN_EXPIRED"
ERROR_TOKEN_INVALID = "TOKEN_INVALID"
ERROR_UNAUTHORIZED = "UNAUTHORIZED"
ERROR_FORBIDDEN = "FORBIDDEN"
ERROR_NETWORK = "NETWORK_ERROR"
ERROR_SERVER = "SERVER_ERROR"
ERROR_VALIDATION_FAILED = "VALIDATION_FAILED"
ERROR_CSRF_MISMATCH = "CSRF_MISMATCH"
ERROR_RATE_LIMITED = "RATE_LIMITED"
ERROR_CONFIGURATION = "CONFIGURATION_ERROR"
ERROR_TIMEOUT = "TIMEOUT"
ERROR_CONNECTION_FAILED = "CONNECTION_FAILED"
ERROR_CANCELLED = "CANCELLED"
ERROR_TOKEN = "TOKEN_ERROR"

# --- Masking ---

MASKED_HEADERS: frozenset[str] = frozenset(
    {"authorization", "cookie", "set-cookie", "x-xsrf-token", "x-csrf-token"}
)
MASKED_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "password_confirmation",
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "secret",
        "private_key",
    }
)

URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
"""Shape a base URL must match: scheme plus a host."""
