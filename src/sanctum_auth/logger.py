"""Diagnostics logger with credential masking.

:class:`SanctumLogger` writes to a Rich :class:`~rich.console.Console`
bound to stderr.  There is no process-wide instance: every engine builds
(or is handed) its own logger and passes it down to the middleware stages
and the resilience layer, so two engines in one process never share
logging state.

Secrets are masked before anything reaches the console:

* :func:`mask_value` -- ``"abcd****wxyz"`` for values longer than eight
  characters, all ``*`` otherwise.
* :func:`sanitize_headers` -- masks ``Authorization``, ``Cookie``,
  ``Set-Cookie`` and the XSRF/CSRF headers.
* :func:`sanitize_body` -- recursively masks password and token fields in
  JSON-like payloads.
"""

from __future__ import annotations

import os
import sys
from typing import Any, Iterable, Mapping, Optional

from rich.console import Console

from sanctum_auth.constants import MASKED_FIELDS, MASKED_HEADERS, SLOW_OPERATION_MS


# ------------------------------------------------------------------ #
# Masking
# ------------------------------------------------------------------ #


def mask_value(value: Any) -> str:
    """Mask a secret, keeping only its first and last four characters.

    Example::

        >>> mask_value("1|abcdefghijkl")
        '1|ab******ijkl'
        >>> mask_value("short")
        '*****'
    """
    text = str(value)
    if len(text) <= 8:
        return "*" * len(text)
    return f"{text[:4]}{'*' * (len(text) - 8)}{text[-4:]}"


def sanitize_headers(headers: Mapping[str, Any]) -> dict[str, str]:
    """Return a copy of *headers* with credential-bearing values masked."""
    return {
        name: mask_value(value) if name.lower() in MASKED_HEADERS else str(value)
        for name, value in headers.items()
    }


def sanitize_body(body: Any) -> Any:
    """Return a copy of *body* with sensitive fields masked at any depth."""
    if isinstance(body, Mapping):
        return {
            key: mask_value(value)
            if str(key).lower() in MASKED_FIELDS and value is not None
            else sanitize_body(value)
            for key, value in body.items()
        }
    if isinstance(body, (list, tuple)):
        return [sanitize_body(item) for item in body]
    return body


def _should_disable_color() -> bool:
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Logger
# ------------------------------------------------------------------ #


class SanctumLogger:
    """Stderr diagnostics for one engine instance.

    Args:
        debug_mode: Emit debug-level lines (request/response traces).
        quiet: Suppress info lines.  Warnings and errors always print.
        console: Console to write to.  Defaults to a stderr console; tests
            pass one backed by :class:`io.StringIO`.
        prefix: Text prepended to every line.
    """

    def __init__(
        self,
        debug_mode: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        prefix: str = "sanctum",
    ) -> None:
        self._debug_mode = debug_mode
        self._quiet = quiet
        self._prefix = prefix
        self._console = console or Console(
            file=sys.stderr,
            stderr=True,
            no_color=_should_disable_color(),
        )

    @property
    def debug_mode(self) -> bool:
        return self._debug_mode

    @property
    def console(self) -> Console:
        return self._console

    # ------------------------------------------------------------------ #
    # Levels
    # ------------------------------------------------------------------ #

    def debug(self, message: str) -> None:
        """Dimmed debug line.  Printed only in debug mode."""
        if self._debug_mode:
            self._emit(f"[{self._prefix}] DEBUG {message}", "dim")

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(f"[{self._prefix}] {message}", None)

    def warning(self, message: str) -> None:
        self._emit(f"[{self._prefix}] Warning: {message}", "yellow")

    def error(self, message: str, error: Optional[BaseException] = None) -> None:
        if error is not None:
            message = f"{message}: {error}"
        self._emit(f"[{self._prefix}] Error: {message}", "bold red")

    def _emit(self, text: str, style: Optional[str]) -> None:
        self._console.print(text, style=style, markup=False, highlight=False, soft_wrap=True)

    # ------------------------------------------------------------------ #
    # HTTP traces
    # ------------------------------------------------------------------ #

    def log_request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> None:
        if not self._debug_mode:
            return
        self.debug(f"--> {method.upper()} {url}")
        if headers:
            self.debug(f"    headers: {sanitize_headers(headers)}")
        if body is not None:
            self.debug(f"    body: {sanitize_body(body)}")

    def log_response(
        self,
        status_code: int,
        url: str,
        headers: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        if not self._debug_mode:
            return
        timing = f" ({duration_ms:.0f}ms)" if duration_ms is not None else ""
        self.debug(f"<-- {status_code} {url}{timing}")
        if headers:
            self.debug(f"    headers: {sanitize_headers(headers)}")
        if body is not None:
            self.debug(f"    body: {sanitize_body(body)}")

    def log_failure(self, method: str, url: str, reason: str, status_code: Optional[int] = None) -> None:
        status = f" {status_code}" if status_code is not None else ""
        self.warning(f"<-x{status} {method.upper()} {url}: {reason}")

    # ------------------------------------------------------------------ #
    # Domain events
    # ------------------------------------------------------------------ #

    def log_auth_event(
        self,
        event: str,
        user_id: Any = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record a login/logout/state event."""
        parts = [f"auth {event}"]
        if user_id is not None:
            parts.append(f"user={user_id}")
        if details:
            parts.append(str(sanitize_body(dict(details))))
        self.debug(" ".join(parts))

    def log_token_operation(
        self,
        operation: str,
        token_id: Any = None,
        token_name: Optional[str] = None,
        abilities: Optional[Iterable[str]] = None,
    ) -> None:
        parts = [f"token {operation}"]
        if token_id is not None:
            parts.append(f"id={token_id}")
        if token_name:
            parts.append(f"name={token_name}")
        if abilities is not None:
            parts.append(f"abilities={list(abilities)}")
        self.debug(" ".join(parts))

    def log_cache_operation(self, operation: str, key: str, hit: Optional[bool] = None) -> None:
        suffix = "" if hit is None else (" hit" if hit else " miss")
        self.debug(f"cache {operation} {key}{suffix}")

    def log_performance(self, operation: str, duration_ms: float) -> None:
        """Trace an operation's duration; slow operations are promoted to a warning."""
        if duration_ms > SLOW_OPERATION_MS:
            self.warning(f"slow operation {operation} took {duration_ms:.0f}ms")
        else:
            self.debug(f"perf {operation} {duration_ms:.1f}ms")
