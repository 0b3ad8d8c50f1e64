"""Error taxonomy for sanctum_auth.

Every failure the SDK surfaces is a :class:`SanctumError`.  Instead of a
subclass per failure category, the error carries an explicit
:class:`ErrorKind` discriminant; handlers branch on ``error.kind``::

    try:
        await auth.login("a@b.com", "secret", "laptop")
    except SanctumError as exc:
        if exc.kind is ErrorKind.VALIDATION:
            show_field_errors(exc.errors)
        elif exc.kind is ErrorKind.RATE_LIMIT:
            schedule_retry(exc.retry_after)
        else:
            show_banner(exc.user_message)

Kinds::

    CONFIGURATION   invalid setup, raised synchronously, never retried
    AUTHENTICATION  bad credentials, or an expired/invalid token
    AUTHORIZATION   authenticated but missing abilities
    TOKEN           create/refresh/revoke lifecycle failures
    VALIDATION      HTTP 422 field errors
    RATE_LIMIT      HTTP 429 with a Retry-After hint
    CSRF            HTTP 419 token mismatch
    NETWORK         timeouts, connection failures, 5xx

``message`` is the technical description used in logs; ``user_message``
and ``recovery_action`` are short texts meant for display.
"""

from __future__ import annotations

import enum
from typing import Any, Iterable, Mapping, Optional

from sanctum_auth import constants as C


class ErrorKind(str, enum.Enum):
    """Closed set of error categories carried by :class:`SanctumError`."""

    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    TOKEN = "token"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    CSRF = "csrf"
    NETWORK = "network"


_DEFAULT_CODES: dict[ErrorKind, str] = {
    ErrorKind.CONFIGURATION: C.ERROR_CONFIGURATION,
    ErrorKind.AUTHENTICATION: C.ERROR_UNAUTHORIZED,
    ErrorKind.AUTHORIZATION: C.ERROR_FORBIDDEN,
    ErrorKind.TOKEN: C.ERROR_TOKEN,
    ErrorKind.VALIDATION: C.ERROR_VALIDATION_FAILED,
    ErrorKind.RATE_LIMIT: C.ERROR_RATE_LIMITED,
    ErrorKind.CSRF: C.ERROR_CSRF_MISMATCH,
    ErrorKind.NETWORK: C.ERROR_NETWORK,
}


class SanctumError(Exception):
    """The single exception type raised by the SDK.

    Args:
        kind: Error category.
        message: Technical description (logged, not shown to end users).
        code: Machine-readable code; defaults per *kind*.
        status_code: HTTP status that produced the error, if any.
        details: Free-form structured context (response body, cause, ...).
        errors: Field-level messages for validation errors.
        retry_after: Seconds to wait before retrying (rate limit).
        limit: Request allowance in the current window (rate limit).
        remaining: Requests left in the current window (rate limit).
        required_abilities: Abilities the rejected action needed.
        user_abilities: Abilities the current token carries.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        errors: Optional[dict[str, list[str]]] = None,
        retry_after: Optional[int] = None,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
        required_abilities: Iterable[str] = (),
        user_abilities: Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code or _DEFAULT_CODES[kind]
        self.status_code = status_code
        self.details = details or {}
        self.errors = errors or {}
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.required_abilities = list(required_abilities)
        self.user_abilities = list(user_abilities)

    def __repr__(self) -> str:
        return (
            f"SanctumError(kind={self.kind.value!r}, code={self.code!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )

    # ------------------------------------------------------------------ #
    # Derived properties
    # ------------------------------------------------------------------ #

    @property
    def recoverable(self) -> bool:
        """Whether the failure can go away without changing configuration."""
        kind = self.kind
        if kind is ErrorKind.CONFIGURATION:
            return False
        if kind is ErrorKind.AUTHENTICATION:
            return True
        if kind is ErrorKind.AUTHORIZATION:
            return False
        if kind is ErrorKind.TOKEN:
            return self.code == C.ERROR_TOKEN_EXPIRED
        if kind is ErrorKind.VALIDATION:
            return False
        if kind is ErrorKind.RATE_LIMIT:
            return True
        if kind is ErrorKind.CSRF:
            return True
        if kind is ErrorKind.NETWORK:
            return self.status_code is None or self.status_code == 408 or self.status_code >= 500
        raise AssertionError(f"unhandled error kind: {kind}")

    @property
    def current(self) -> Optional[int]:
        """Requests already used in the rate-limit window, when known."""
        if self.limit is None or self.remaining is None:
            return None
        return self.limit - self.remaining

    @property
    def user_message(self) -> str:
        """Short, non-technical text suitable for direct display."""
        kind = self.kind
        if kind is ErrorKind.CONFIGURATION:
            return "The application is not configured correctly. Please contact support."
        if kind is ErrorKind.AUTHENTICATION:
            if self.code == C.ERROR_TOKEN_EXPIRED:
                return "Your session has expired. Please log in again."
            if self.code == C.ERROR_INVALID_CREDENTIALS:
                return "Invalid email or password. Please try again."
            return "Authentication failed. Please log in again."
        if kind is ErrorKind.AUTHORIZATION:
            return "You don't have permission to perform this action."
        if kind is ErrorKind.TOKEN:
            return "There was a problem with your access token. Please log in again."
        if kind is ErrorKind.VALIDATION:
            messages = self.all_messages()
            return messages[0] if messages else "Please check your input and try again."
        if kind is ErrorKind.RATE_LIMIT:
            if self.retry_after is not None:
                return f"Too many requests. Please wait {self.retry_after} seconds."
            return "Too many requests. Please try again later."
        if kind is ErrorKind.CSRF:
            return "Your session has expired. Please refresh and try again."
        if kind is ErrorKind.NETWORK:
            if self.code == C.ERROR_TIMEOUT:
                return "The request timed out. Please check your connection and try again."
            if self.code == C.ERROR_CONNECTION_FAILED:
                return "Unable to connect. Please check your internet connection."
            if self.code == C.ERROR_SERVER:
                return "The server encountered an error. Please try again later."
            return "A network error occurred. Please try again."
        raise AssertionError(f"unhandled error kind: {kind}")

    @property
    def recovery_action(self) -> Optional[str]:
        """Optional hint describing what the user can do next."""
        kind = self.kind
        if kind is ErrorKind.CONFIGURATION:
            return None
        if kind is ErrorKind.AUTHENTICATION:
            return "Log in again"
        if kind is ErrorKind.AUTHORIZATION:
            return "Request access with the required abilities"
        if kind is ErrorKind.TOKEN:
            return "Log in again to obtain a new token"
        if kind is ErrorKind.VALIDATION:
            return "Correct the highlighted fields and resubmit"
        if kind is ErrorKind.RATE_LIMIT:
            if self.retry_after is not None:
                return f"Wait {self.retry_after} seconds before retrying"
            return "Wait a moment before retrying"
        if kind is ErrorKind.CSRF:
            return "Refresh and try again"
        if kind is ErrorKind.NETWORK:
            return "Check your connection and try again" if self.recoverable else None
        raise AssertionError(f"unhandled error kind: {kind}")

    # ------------------------------------------------------------------ #
    # Validation helpers
    # ------------------------------------------------------------------ #

    def first_error(self, field: str) -> Optional[str]:
        """Return the first message recorded for *field*, or ``None``."""
        messages = self.errors.get(field) or []
        return messages[0] if messages else None

    def has_field_error(self, field: str) -> bool:
        return bool(self.errors.get(field))

    def all_messages(self) -> list[str]:
        """Flatten the field errors into a single list, in field order."""
        return [message for messages in self.errors.values() for message in messages]

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error for logging or transport across a boundary."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "recoverable": self.recoverable,
            "user_message": self.user_message,
        }
        if self.details:
            data["details"] = self.details
        if self.errors:
            data["errors"] = self.errors
        if self.kind is ErrorKind.RATE_LIMIT:
            data["retry_after"] = self.retry_after
            data["limit"] = self.limit
            data["remaining"] = self.remaining
        if self.required_abilities:
            data["required_abilities"] = self.required_abilities
            data["user_abilities"] = self.user_abilities
        return data

    # ------------------------------------------------------------------ #
    # Constructors
    # ------------------------------------------------------------------ #

    @classmethod
    def configuration(cls, message: str, **details: Any) -> SanctumError:
        return cls(ErrorKind.CONFIGURATION, message, details=details or None)

    @classmethod
    def invalid_base_url(cls, url: str) -> SanctumError:
        return cls.configuration(f"Invalid base URL: {url!r}", base_url=url)

    @classmethod
    def authentication(
        cls,
        message: str,
        status_code: Optional[int] = 401,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> SanctumError:
        return cls(
            ErrorKind.AUTHENTICATION,
            message,
            code=code,
            status_code=status_code,
            details=details,
        )

    @classmethod
    def invalid_credentials(cls, details: Optional[dict[str, Any]] = None) -> SanctumError:
        return cls.authentication(
            "Invalid credentials provided", code=C.ERROR_INVALID_CREDENTIALS, details=details
        )

    @classmethod
    def token_expired(cls, details: Optional[dict[str, Any]] = None) -> SanctumError:
        return cls.authentication(
            "Authentication token has expired", code=C.ERROR_TOKEN_EXPIRED, details=details
        )

    @classmethod
    def token_invalid(cls, details: Optional[dict[str, Any]] = None) -> SanctumError:
        return cls.authentication(
            "Authentication token is invalid", code=C.ERROR_TOKEN_INVALID, details=details
        )

    @classmethod
    def not_authenticated(cls, message: str = "User is not authenticated") -> SanctumError:
        return cls.authentication(message, code=C.ERROR_UNAUTHORIZED)

    @classmethod
    def authorization(
        cls,
        message: str = "This action is unauthorized",
        status_code: Optional[int] = 403,
        details: Optional[dict[str, Any]] = None,
    ) -> SanctumError:
        return cls(ErrorKind.AUTHORIZATION, message, status_code=status_code, details=details)

    @classmethod
    def insufficient_abilities(
        cls, required: Iterable[str], granted: Iterable[str]
    ) -> SanctumError:
        required = list(required)
        return cls(
            ErrorKind.AUTHORIZATION,
            f"Insufficient abilities: requires {', '.join(required)}",
            status_code=403,
            required_abilities=required,
            user_abilities=granted,
        )

    @classmethod
    def token(
        cls,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> SanctumError:
        return cls(
            ErrorKind.TOKEN, message, code=code, status_code=status_code, details=details
        )

    @classmethod
    def validation(
        cls,
        errors: Mapping[str, Iterable[str]],
        message: str = "The given data was invalid.",
        status_code: Optional[int] = 422,
    ) -> SanctumError:
        return cls(
            ErrorKind.VALIDATION,
            message,
            status_code=status_code,
            errors={field: list(msgs) for field, msgs in errors.items()},
        )

    @classmethod
    def validation_from_response(cls, body: Any, status_code: int = 422) -> SanctumError:
        """Build a validation error from a ``{"message", "errors"}`` body.

        Field values may be a single string or a list of strings.
        """
        if not isinstance(body, Mapping):
            return cls.validation({}, status_code=status_code)
        errors: dict[str, list[str]] = {}
        raw = body.get("errors")
        if isinstance(raw, Mapping):
            for field, value in raw.items():
                if isinstance(value, (list, tuple)):
                    errors[str(field)] = [str(v) for v in value]
                elif value is not None:
                    errors[str(field)] = [str(value)]
        message = body.get("message") or "The given data was invalid."
        return cls.validation(errors, message=str(message), status_code=status_code)

    @classmethod
    def rate_limit(
        cls,
        message: str = "Too many requests",
        retry_after: Optional[int] = None,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
    ) -> SanctumError:
        return cls(
            ErrorKind.RATE_LIMIT,
            message,
            status_code=C.STATUS_RATE_LIMITED,
            retry_after=retry_after,
            limit=limit,
            remaining=remaining,
        )

    @classmethod
    def rate_limit_from_headers(
        cls, headers: Mapping[str, str], message: str = "Too many requests"
    ) -> SanctumError:
        """Build a rate-limit error from ``Retry-After`` and ``X-RateLimit-*`` headers.

        Lookups are case-insensitive when *headers* is an
        :class:`httpx.Headers`; unparseable values are ignored.
        """
        return cls.rate_limit(
            message,
            retry_after=_int_header(headers, C.HEADER_RETRY_AFTER),
            limit=_int_header(headers, C.HEADER_RATE_LIMIT_LIMIT),
            remaining=_int_header(headers, C.HEADER_RATE_LIMIT_REMAINING),
        )

    @classmethod
    def csrf(
        cls,
        message: str = "CSRF token mismatch",
        details: Optional[dict[str, Any]] = None,
    ) -> SanctumError:
        return cls(
            ErrorKind.CSRF, message, status_code=C.STATUS_CSRF_MISMATCH, details=details
        )

    @classmethod
    def network(
        cls,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> SanctumError:
        return cls(
            ErrorKind.NETWORK, message, code=code, status_code=status_code, details=details
        )

    @classmethod
    def timeout(cls, message: str = "Request timed out") -> SanctumError:
        return cls.network(message, status_code=408, code=C.ERROR_TIMEOUT)

    @classmethod
    def connection_failed(cls, message: str = "Connection failed") -> SanctumError:
        return cls.network(message, code=C.ERROR_CONNECTION_FAILED)

    @classmethod
    def server_error(
        cls, status_code: int, message: str = "Server error", details: Optional[dict[str, Any]] = None
    ) -> SanctumError:
        return cls.network(message, status_code=status_code, code=C.ERROR_SERVER, details=details)


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
