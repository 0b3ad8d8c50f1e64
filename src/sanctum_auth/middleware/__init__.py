"""Pipeline stages, listed outermost first.

* :class:`RetryMiddleware` -- backoff and re-dispatch of transient failures.
* :class:`CsrfMiddleware` -- XSRF header and mismatch recovery (cookie modes).
* :class:`TokenMiddleware` -- bearer injection and expiry detection (token modes).
* :class:`DiagnosticsMiddleware` -- masked traces (debug mode).
"""

from sanctum_auth.middleware.csrf import CsrfContext, CsrfMiddleware
from sanctum_auth.middleware.diagnostics import DiagnosticsMiddleware
from sanctum_auth.middleware.retry import RetryMiddleware
from sanctum_auth.middleware.token import (
    TokenExpiryHandler,
    TokenMiddleware,
    is_valid_token_format,
)

__all__ = [
    "CsrfContext",
    "CsrfMiddleware",
    "DiagnosticsMiddleware",
    "RetryMiddleware",
    "TokenExpiryHandler",
    "TokenMiddleware",
    "is_valid_token_format",
]
