"""Cookie storage and the session/XSRF cookie helpers built on it.

:class:`CookieStore` is the narrow contract the pipeline uses: cookies for
a domain, clear a domain, ingest ``Set-Cookie`` headers.
:class:`HttpxCookieStore` implements it on :class:`httpx.Cookies` (and so
on the standard :mod:`http.cookiejar` policy for domain and expiry rules).

:class:`CookieManager` adds the cookie-session conveniences: reading the
decoded ``XSRF-TOKEN``, locating the session cookie, bootstrapping the
CSRF cookie, and checking a host against the stateful-domain allowlist.
"""

from __future__ import annotations

import abc
import time
from http.cookiejar import Cookie
from typing import Any, Awaitable, Callable, Iterable, Optional
from urllib.parse import unquote

import httpx

from sanctum_auth import constants as C
from sanctum_auth.logger import SanctumLogger, mask_value
from sanctum_auth.models import SanctumConfig


def domain_matches(host: str, cookie_domain: str) -> bool:
    """True if a cookie set for *cookie_domain* should be sent to *host*."""
    host = host.lower()
    domain = cookie_domain.lower().lstrip(".")
    # http.cookiejar stores dotless hosts (e.g. localhost) as "<host>.local".
    candidates = {host} if "." in host else {host, f"{host}.local"}
    return any(candidate == domain or candidate.endswith(f".{domain}") for candidate in candidates)


class CookieStore(abc.ABC):
    """Domain-scoped cookie jar."""

    @abc.abstractmethod
    def cookies_for(self, domain: str) -> list[Cookie]:
        """Unexpired cookies that apply to *domain*."""

    @abc.abstractmethod
    def clear(self, domain: Optional[str] = None) -> None:
        """Drop cookies for *domain*, or every cookie when ``None``."""

    @abc.abstractmethod
    def ingest(self, domain: str, set_cookie_headers: Iterable[str]) -> None:
        """Store cookies from ``Set-Cookie`` header values received from *domain*."""

    @abc.abstractmethod
    def remove(self, name: str, domain: str) -> None:
        """Drop the cookie called *name* that applies to *domain*."""


class HttpxCookieStore(CookieStore):
    """:class:`CookieStore` backed by :class:`httpx.Cookies`."""

    def __init__(self, cookies: Optional[httpx.Cookies] = None) -> None:
        self._cookies = cookies if cookies is not None else httpx.Cookies()

    @property
    def cookies(self) -> httpx.Cookies:
        return self._cookies

    def cookies_for(self, domain: str) -> list[Cookie]:
        now = time.time()
        return [
            cookie
            for cookie in self._cookies.jar
            if domain_matches(domain, cookie.domain) and not cookie.is_expired(now)
        ]

    def clear(self, domain: Optional[str] = None) -> None:
        if domain is None:
            self._cookies.jar.clear()
            return
        for cookie in list(self._cookies.jar):
            if domain_matches(domain, cookie.domain):
                self._cookies.jar.clear(cookie.domain, cookie.path, cookie.name)

    def ingest(self, domain: str, set_cookie_headers: Iterable[str]) -> None:
        headers = [("set-cookie", value) for value in set_cookie_headers]
        if not headers:
            return
        response = httpx.Response(
            200, headers=headers, request=httpx.Request("GET", f"https://{domain}/")
        )
        self._cookies.extract_cookies(response)

    def set(self, name: str, value: str, domain: str) -> None:
        """Store a cookie directly, e.g. one carried over from a web view."""
        self._cookies.set(name, value, domain=domain)

    def remove(self, name: str, domain: str) -> None:
        for cookie in list(self._cookies.jar):
            if cookie.name == name and domain_matches(domain, cookie.domain):
                self._cookies.jar.clear(cookie.domain, cookie.path, cookie.name)


Requester = Callable[..., Awaitable[httpx.Response]]


class CookieManager:
    """Cookie-session helpers for one backend host.

    Args:
        config: Supplies the host, CSRF endpoint and stateful-domain list.
        store: The cookie jar shared with the pipeline.
        logger: Diagnostics sink.
        requester: Sends requests through the pipeline (``Pipeline.request``);
            used to bootstrap the CSRF cookie.
    """

    def __init__(
        self,
        config: SanctumConfig,
        store: CookieStore,
        logger: SanctumLogger,
        requester: Optional[Requester] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._logger = logger
        self._requester = requester

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def store(self) -> CookieStore:
        return self._store

    def is_domain_stateful(self, domain: Optional[str] = None) -> bool:
        """Check *domain* (default: the backend host) against the allowlist.

        An empty allowlist makes every domain stateful.  Entries may be
        exact hosts or ``*.example.com`` wildcards, and may carry a port.
        """
        host = (domain or self.host).lower()
        allowed = self._config.stateful_domains
        if not allowed:
            return True
        for entry in allowed:
            pattern = entry.lower().split(":", 1)[0]
            if pattern.startswith("*."):
                suffix = pattern[1:]
                if host.endswith(suffix) or host == pattern[2:]:
                    return True
            elif host == pattern:
                return True
        return False

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def _find(self, predicate: Callable[[Cookie], bool]) -> Optional[Cookie]:
        for cookie in self._store.cookies_for(self.host):
            if predicate(cookie):
                return cookie
        return None

    def get_csrf_token(self) -> Optional[str]:
        """Percent-decoded value of the ``XSRF-TOKEN`` cookie."""
        cookie = self._find(lambda c: c.name == C.COOKIE_XSRF_TOKEN)
        if cookie is None or not cookie.value:
            return None
        return unquote(cookie.value)

    def get_session_cookie(self) -> Optional[Cookie]:
        """The Laravel session cookie (``laravel_session`` or ``<app>_session``)."""
        exact = self._find(lambda c: c.name == C.COOKIE_SESSION)
        return exact or self._find(lambda c: c.name.endswith("_session"))

    def all_cookies(self, mask: bool = True) -> dict[str, str]:
        cookies = self._store.cookies_for(self.host)
        return {
            cookie.name: mask_value(cookie.value or "") if mask else (cookie.value or "")
            for cookie in cookies
        }

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    async def fetch_csrf_cookie(self) -> None:
        """Hit the CSRF cookie endpoint so the backend sets ``XSRF-TOKEN``.

        Raises:
            SanctumError: If the bootstrap request fails.
        """
        if self._requester is None:
            raise RuntimeError("CookieManager has no requester bound")
        self._logger.debug("fetching CSRF cookie")
        await self._requester("GET", self._config.endpoints.csrf_cookie)

    def clear_cookies(self) -> None:
        self._store.clear(self.host)

    def clear_auth_cookies(self) -> None:
        """Drop the XSRF and session cookies, keeping unrelated ones."""
        for cookie in self._store.cookies_for(self.host):
            if cookie.name == C.COOKIE_XSRF_TOKEN or cookie.name.endswith("_session"):
                self._store.remove(cookie.name, self.host)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def validate_csrf_protection(self) -> dict[str, Any]:
        """Summarise whether a cookie-session request would carry CSRF protection."""
        has_csrf = self.get_csrf_token() is not None
        has_session = self.get_session_cookie() is not None
        stateful = self.is_domain_stateful()
        return {
            "has_csrf_cookie": has_csrf,
            "has_session_cookie": has_session,
            "domain_stateful": stateful,
            "valid": has_csrf and stateful,
        }

    def stats(self) -> dict[str, Any]:
        cookies = self._store.cookies_for(self.host)
        return {
            "host": self.host,
            "count": len(cookies),
            "names": sorted(cookie.name for cookie in cookies),
            "has_csrf_cookie": any(c.name == C.COOKIE_XSRF_TOKEN for c in cookies),
            "has_session_cookie": self.get_session_cookie() is not None,
        }
