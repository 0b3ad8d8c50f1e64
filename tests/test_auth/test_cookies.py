"""Tests for the cookie jar and cookie-session helpers."""

from __future__ import annotations

import pytest

from sanctum_auth.auth.cookies import CookieManager, HttpxCookieStore, domain_matches
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import SanctumConfig

from fakes import BASE_URL

HOST = "api.example.com"


def _manager(logger: SanctumLogger, store: HttpxCookieStore, **overrides: object) -> CookieManager:
    config = SanctumConfig(base_url=BASE_URL, **overrides)
    return CookieManager(config, store, logger)


class TestDomainMatches:
    @pytest.mark.parametrize(
        "host, domain, expected",
        [
            ("api.example.com", "api.example.com", True),
            ("api.example.com", ".example.com", True),
            ("api.example.com", "example.com", True),
            ("example.com", "api.example.com", False),
            ("badexample.com", "example.com", False),
            ("localhost", "localhost.local", True),
        ],
    )
    def test_matching(self, host: str, domain: str, expected: bool) -> None:
        assert domain_matches(host, domain) is expected


class TestHttpxCookieStore:
    def test_ingest_and_lookup(self) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["a=1; Path=/", "b=2; Path=/; Domain=example.com"])

        assert sorted(c.name for c in store.cookies_for(HOST)) == ["a", "b"]
        assert [c.name for c in store.cookies_for("www.example.com")] == ["b"]
        assert store.cookies_for("other.org") == []

    def test_expired_cookies_skipped(self) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["gone=1; Path=/; Max-Age=0", "kept=1; Path=/"])
        assert [c.name for c in store.cookies_for(HOST)] == ["kept"]

    def test_clear_domain(self) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["a=1; Path=/"])
        store.ingest("other.org", ["b=2; Path=/"])

        store.clear(HOST)

        assert store.cookies_for(HOST) == []
        assert len(store.cookies_for("other.org")) == 1
        store.clear()
        assert store.cookies_for("other.org") == []

    def test_set_and_remove(self) -> None:
        store = HttpxCookieStore()
        store.set("laravel_session", "s1", HOST)
        assert store.cookies_for(HOST)[0].value == "s1"
        store.remove("laravel_session", HOST)
        assert store.cookies_for(HOST) == []


class TestCookieManager:
    def test_csrf_token_decoded(self, logger: SanctumLogger) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["XSRF-TOKEN=eyJpdiI6%3D%3D; Path=/"])
        assert _manager(logger, store).get_csrf_token() == "eyJpdiI6=="

    def test_no_csrf_token(self, logger: SanctumLogger) -> None:
        assert _manager(logger, HttpxCookieStore()).get_csrf_token() is None

    def test_session_cookie_by_suffix(self, logger: SanctumLogger) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["myapp_session=s1; Path=/"])
        cookie = _manager(logger, store).get_session_cookie()
        assert cookie is not None
        assert cookie.name == "myapp_session"

    def test_all_cookies_masked(self, logger: SanctumLogger) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["laravel_session=abcdefghijklmnop; Path=/"])
        manager = _manager(logger, store)
        assert manager.all_cookies() == {"laravel_session": "abcd********mnop"}
        assert manager.all_cookies(mask=False) == {"laravel_session": "abcdefghijklmnop"}

    def test_clear_auth_cookies_keeps_others(self, logger: SanctumLogger) -> None:
        store = HttpxCookieStore()
        store.ingest(HOST, ["XSRF-TOKEN=x; Path=/", "laravel_session=s; Path=/", "theme=dark; Path=/"])
        manager = _manager(logger, store)

        manager.clear_auth_cookies()

        assert manager.all_cookies(mask=False) == {"theme": "dark"}
        manager.clear_cookies()
        assert manager.all_cookies() == {}

    @pytest.mark.parametrize(
        "domains, host, expected",
        [
            ([], "anything.test", True),
            (["api.example.com"], "api.example.com", True),
            (["api.example.com:8000"], "api.example.com", True),
            (["*.example.com"], "api.example.com", True),
            (["*.example.com"], "example.com", True),
            (["app.example.com"], "api.example.com", False),
        ],
    )
    def test_is_domain_stateful(
        self, logger: SanctumLogger, domains: list[str], host: str, expected: bool
    ) -> None:
        manager = _manager(logger, HttpxCookieStore(), stateful_domains=domains)
        assert manager.is_domain_stateful(host) is expected

    def test_validate_csrf_protection(self, logger: SanctumLogger) -> None:
        store = HttpxCookieStore()
        manager = _manager(logger, store)
        assert manager.validate_csrf_protection()["valid"] is False

        store.ingest(HOST, ["XSRF-TOKEN=x; Path=/", "laravel_session=s; Path=/"])
        report = manager.validate_csrf_protection()
        assert report == {
            "has_csrf_cookie": True,
            "has_session_cookie": True,
            "domain_stateful": True,
            "valid": True,
        }
        assert manager.stats()["names"] == ["XSRF-TOKEN", "laravel_session"]

    async def test_fetch_without_requester(self, logger: SanctumLogger) -> None:
        with pytest.raises(RuntimeError):
            await _manager(logger, HttpxCookieStore()).fetch_csrf_cookie()
