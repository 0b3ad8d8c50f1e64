"""Tests for the authentication engine."""

from __future__ import annotations

import asyncio
import gc
import json

import pytest

from sanctum_auth.auth.credential_store import MemoryCredentialStore
from sanctum_auth.auth.engine import SanctumAuth
from sanctum_auth.exceptions import ErrorKind, SanctumError
from sanctum_auth.models import AuthMode, AuthState, SanctumConfig, User

from fakes import BASE_URL, LOGIN_BODY, FakeBackend, LockedStore, reply

CSRF_PATH = "/sanctum/csrf-cookie"


def _body(request) -> dict:
    return json.loads(request.content)


async def _logged_in(make_auth, backend: FakeBackend, body: dict = LOGIN_BODY, **overrides):
    backend.add("POST", "/login", reply(200, body))
    auth = await make_auth(**overrides)
    await auth.login("a@b.com", "secret", device_name="laptop")
    return auth


class TestInitialization:
    async def test_no_stored_token(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth(initialize=False)
        seen: list[AuthState] = []
        auth.subscribe(seen.append)

        await auth.initialize()

        assert seen == [AuthState.VERIFYING, AuthState.UNAUTHENTICATED]
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert backend.requests == []

    async def test_restores_stored_session(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        await store.store_session("1|abc", User(id=1, email="a@b.com"), ["read"])

        auth = await make_auth()

        assert auth.is_authenticated
        assert auth.current_token == "1|abc"
        assert auth.current_user.email == "a@b.com"
        assert auth.abilities() == ["read"]
        assert backend.requests == []

    async def test_fetches_missing_user(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        await store.set_token("1|abc")
        backend.add("GET", "/api/user", reply(200, {"data": {"id": 7, "name": "Ann"}}))

        auth = await make_auth()

        assert auth.is_authenticated
        assert auth.current_user.id == 7
        assert (await store.get_user()).name == "Ann"
        assert backend.requests[0].headers["Authorization"] == "Bearer 1|abc"

    async def test_rejected_stored_token(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore, log_output
    ) -> None:
        await store.set_token("1|abc")
        backend.add("GET", "/api/user", reply(401, {"message": "Unauthenticated."}))

        auth = await make_auth()

        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert store.data == {}
        assert "stored token rejected during restore" in log_output.getvalue()

    async def test_initialize_is_idempotent(self, make_auth) -> None:
        auth = await make_auth(initialize=False)
        await asyncio.gather(auth.initialize(), auth.initialize())
        await auth.initialize()
        assert auth.auth_state is AuthState.UNAUTHENTICATED

    async def test_operations_wait_for_initialization(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        await store.store_session("1|abc", User(id=1), None)
        backend.add("GET", "/api/data", reply(200, {"ok": True}))
        auth = await make_auth(initialize=False)

        response = await auth.get("/api/data")

        assert response.json() == {"ok": True}
        assert auth.is_authenticated

    async def test_context_manager(
        self, backend: FakeBackend, store: MemoryCredentialStore, config: SanctumConfig
    ) -> None:
        async with SanctumAuth(config, store=store, http_transport=backend.transport) as auth:
            assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert auth.state_stream.closed


class TestLogin:
    async def test_success(self, make_auth, backend: FakeBackend, store: MemoryCredentialStore) -> None:
        backend.add("POST", "/login", reply(200, LOGIN_BODY))
        backend.add("GET", "/api/data", reply(200, {}))
        auth = await make_auth()

        result = await auth.login("a@b.com", "secret", device_name="laptop")

        assert result.token == "1|abc"
        assert auth.auth_state is AuthState.AUTHENTICATED
        assert auth.current_user.email == "a@b.com"
        assert auth.abilities() == ["*"]
        assert await store.get_token() == "1|abc"
        assert (await store.get_user()).id == 1
        assert _body(backend.calls("POST", "/login")[0]) == {
            "email": "a@b.com",
            "password": "secret",
            "device_name": "laptop",
            "abilities": ["*"],
        }

        await auth.get("/api/data")
        assert backend.calls("GET", "/api/data")[0].headers["Authorization"] == "Bearer 1|abc"

    async def test_abilities_and_remember_sent(self, make_auth, backend: FakeBackend) -> None:
        backend.add("POST", "/login", reply(200, LOGIN_BODY))
        auth = await make_auth()

        await auth.login("a@b.com", "secret", "laptop", abilities=["read"], remember=True)

        body = _body(backend.requests[0])
        assert body["abilities"] == ["read"]
        assert body["remember"] is True
        assert auth.abilities() == ["read"]

    async def test_empty_fields_rejected_locally(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()

        with pytest.raises(SanctumError) as exc_info:
            await auth.login("a@b.com", "", device_name="  ")

        error = exc_info.value
        assert error.kind is ErrorKind.VALIDATION
        assert error.status_code is None
        assert error.first_error("password") == "The password field is required."
        assert error.first_error("device_name") == "The device name field is required."
        assert not error.has_field_error("email")
        assert backend.requests == []

    async def test_server_validation_error(self, make_auth, backend: FakeBackend) -> None:
        backend.add(
            "POST",
            "/login",
            reply(422, {"message": "Invalid", "errors": {"email": "The email is invalid."}}),
        )
        auth = await make_auth()

        with pytest.raises(SanctumError) as exc_info:
            await auth.login("bad", "secret", "laptop")

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.errors == {"email": ["The email is invalid."]}
        assert auth.auth_state is AuthState.UNAUTHENTICATED

    async def test_invalid_credentials(self, make_auth, backend: FakeBackend) -> None:
        backend.add(
            "POST", "/login", reply(401, {"message": "These credentials do not match our records."})
        )
        auth = await make_auth()

        with pytest.raises(SanctumError) as exc_info:
            await auth.login("a@b.com", "wrong", "laptop")

        assert exc_info.value.code == "INVALID_CREDENTIALS"
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert len(backend.calls("POST", "/login")) == 1

    async def test_malformed_response(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        backend.add("POST", "/login", reply(200, {"user": {"id": 1}}))
        auth = await make_auth()

        with pytest.raises(SanctumError) as exc_info:
            await auth.login("a@b.com", "secret", "laptop")

        assert exc_info.value.kind is ErrorKind.AUTHENTICATION
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert store.data == {}

    async def test_spa_mode_bootstraps_csrf(self, make_auth, backend: FakeBackend) -> None:
        backend.add("GET", CSRF_PATH, reply(204, headers={"Set-Cookie": "XSRF-TOKEN=x%2By; Path=/"}))
        backend.add("POST", "/login", reply(200, LOGIN_BODY))
        auth = await make_auth(auth_mode=AuthMode.SPA)

        await auth.login("a@b.com", "secret", "laptop")

        assert [r.url.path for r in backend.requests] == [CSRF_PATH, "/login"]
        login = backend.requests[1]
        assert login.headers["X-XSRF-TOKEN"] == "x+y"
        assert "Authorization" not in login.headers
        assert auth.is_authenticated

    async def test_records_metrics(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend)
        stats = auth.performance_stats()
        assert stats["operations"]["login"]["count"] == 1
        assert stats["operations"]["login"]["errors"] == 0
        assert stats["retry"]["active_tickets"] == 0
        assert set(stats) >= {"cache", "connections", "operations", "retry", "csrf", "cookies"}


class TestRegister:
    async def test_with_token(self, make_auth, backend: FakeBackend) -> None:
        backend.add("POST", "/register", reply(201, LOGIN_BODY))
        auth = await make_auth()

        result = await auth.register(
            "Ann",
            "a@b.com",
            "secret",
            "secret",
            "laptop",
            additional_fields={"team": "blue"},
        )

        assert result.token == "1|abc"
        assert auth.is_authenticated
        body = _body(backend.requests[0])
        assert body["name"] == "Ann"
        assert body["password_confirmation"] == "secret"
        assert body["team"] == "blue"

    async def test_verification_required(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        backend.add(
            "POST",
            "/register",
            reply(201, {"user": {"id": 2, "email": "a@b.com"}, "email_verification_required": True}),
        )
        auth = await make_auth()

        result = await auth.register("Ann", "a@b.com", "secret", "secret", "laptop")

        assert result.email_verification_required
        assert result.token is None
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert await store.get_token() is None

    async def test_missing_fields(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()
        with pytest.raises(SanctumError) as exc_info:
            await auth.register("", "a@b.com", "secret", "", "laptop")
        assert set(exc_info.value.errors) == {"name", "password_confirmation"}
        assert backend.requests == []


class TestLogout:
    async def test_success(self, make_auth, backend: FakeBackend, store: MemoryCredentialStore) -> None:
        auth = await _logged_in(make_auth, backend)
        backend.add("POST", "/logout", reply(200, {"message": "Bye"}))

        result = await auth.logout()

        assert result.message == "Bye"
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert auth.current_user is None
        assert auth.current_token is None
        assert store.data == {}
        assert backend.calls("POST", "/logout")[0].headers["Authorization"] == "Bearer 1|abc"

    async def test_clears_state_when_server_fails(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend)
        backend.add("POST", "/logout", reply(500, {"message": "boom"}))

        with pytest.raises(SanctumError) as exc_info:
            await auth.logout()

        assert exc_info.value.status_code == 500
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert store.data == {}
        assert auth.performance.cache.get("user") is None

    async def test_requires_session(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()
        with pytest.raises(SanctumError) as exc_info:
            await auth.logout()
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION
        assert backend.requests == []

    async def test_spa_mode_drops_auth_cookies(self, make_auth, backend: FakeBackend) -> None:
        backend.add(
            "GET",
            CSRF_PATH,
            reply(204, headers={"Set-Cookie": "XSRF-TOKEN=abc; Path=/"}),
        )
        auth = await _logged_in(make_auth, backend, auth_mode=AuthMode.SPA)
        auth.cookies.store.ingest("api.example.com", ["laravel_session=s1; Path=/", "theme=dark; Path=/"])
        backend.add("POST", "/logout", reply(204))

        await auth.logout()

        assert auth.cookies.get_csrf_token() is None
        assert auth.cookies.get_session_cookie() is None
        assert auth.cookies.all_cookies(mask=False) == {"theme": "dark"}
        assert auth.csrf_context.token is None


class TestUser:
    async def test_returns_current_user(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend)

        user = await auth.user()

        assert user.email == "a@b.com"
        assert backend.calls("GET", "/api/user") == []

    async def test_force_refresh(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend)
        backend.add("GET", "/api/user", reply(200, {"user": {"id": 1, "name": "Renamed", "team": "x"}}))

        user = await auth.user(force_refresh=True)

        assert user.name == "Renamed"
        assert user.get("team") == "x"
        assert auth.current_user.name == "Renamed"
        assert (await store.get_user()).name == "Renamed"
        assert auth.performance.cache.get("user") == user

    async def test_requires_session(self, make_auth) -> None:
        auth = await make_auth()
        with pytest.raises(SanctumError) as exc_info:
            await auth.user()
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION

    async def test_logout_during_fetch_discards_user(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend)
        backend.add("GET", "/api/user", reply(200, {"id": 1, "name": "Late"}))
        backend.add("POST", "/logout", reply(200, {}))
        gate = backend.hold("GET", "/api/user")

        fetch = asyncio.create_task(auth.user(force_refresh=True))
        await asyncio.wait_for(backend.wait_held(), 1)
        await auth.logout()
        gate.set()

        with pytest.raises(SanctumError) as exc_info:
            await fetch
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert auth.current_user is None
        assert store.data == {}
        assert auth.performance.cache.get("user") is None


REFRESHABLE_LOGIN = {**LOGIN_BODY, "refresh_token": "r1"}


class TestTokenExpiry:
    async def test_expired_token_refreshed_once(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend, REFRESHABLE_LOGIN)
        backend.add("GET", "/api/data", reply(401, {"message": "Token expired"}))
        backend.add("POST", "/api/refresh", reply(200, {"token": "2|new", "refresh_token": "r2"}))

        with pytest.raises(SanctumError) as exc_info:
            await auth.get("/api/data")

        assert exc_info.value.code == "TOKEN_EXPIRED"
        refreshes = backend.calls("POST", "/api/refresh")
        assert len(refreshes) == 1
        assert _body(refreshes[0]) == {"refresh_token": "r1"}
        assert auth.is_authenticated
        assert auth.current_token == "2|new"
        assert await store.get_token() == "2|new"
        assert await store.get_refresh_token() == "r2"

    async def test_rejected_refresh_ends_session(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend, REFRESHABLE_LOGIN)
        backend.add("GET", "/api/data", reply(401, {"message": "Token expired"}))
        backend.add("POST", "/api/refresh", reply(401, {"message": "Token expired"}))

        with pytest.raises(SanctumError):
            await auth.get("/api/data")

        assert len(backend.calls("POST", "/api/refresh")) == 1
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert store.data == {}

    async def test_auto_refresh_disabled(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend, REFRESHABLE_LOGIN, auto_refresh_tokens=False)
        backend.add("GET", "/api/data", reply(401, {"message": "Invalid token"}))

        with pytest.raises(SanctumError) as exc_info:
            await auth.get("/api/data")

        assert exc_info.value.code == "TOKEN_INVALID"
        assert backend.calls("POST", "/api/refresh") == []
        assert auth.auth_state is AuthState.UNAUTHENTICATED

    async def test_without_refresh_token(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend)
        backend.add("GET", "/api/data", reply(401, {"message": "Token expired"}))

        with pytest.raises(SanctumError):
            await auth.get("/api/data")

        assert backend.calls("POST", "/api/refresh") == []
        assert auth.auth_state is AuthState.UNAUTHENTICATED

    async def test_rotated_token_adopted(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend)
        backend.add("GET", "/api/data", reply(200, {}, headers={"X-New-Token": "5|rotated"}))

        await auth.get("/api/data")

        assert auth.current_token == "5|rotated"
        assert await store.get_token() == "5|rotated"


class TestRefreshToken:
    async def test_explicit_refresh(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend, REFRESHABLE_LOGIN)
        backend.add("POST", "/api/refresh", reply(200, {"access_token": "2|new"}))

        token = await auth.refresh_token()

        assert token == "2|new"
        assert auth.current_token == "2|new"
        assert await auth.store.get_refresh_token() == "r1"
        assert auth.is_authenticated

    async def test_no_refresh_token(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend)

        with pytest.raises(SanctumError) as exc_info:
            await auth.refresh_token()

        assert exc_info.value.kind is ErrorKind.TOKEN
        assert exc_info.value.status_code == 401
        assert auth.is_authenticated

    async def test_server_failure_wrapped(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend, REFRESHABLE_LOGIN)
        backend.add("POST", "/api/refresh", reply(404, {"message": "Not Found"}))

        with pytest.raises(SanctumError) as exc_info:
            await auth.refresh_token()

        assert exc_info.value.kind is ErrorKind.TOKEN
        assert exc_info.value.status_code == 404
        assert auth.current_token == "1|abc"

    async def test_requires_session(self, make_auth) -> None:
        auth = await make_auth()
        with pytest.raises(SanctumError) as exc_info:
            await auth.refresh_token()
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION

    async def test_logout_during_refresh_discards_token(
        self, make_auth, backend: FakeBackend, store: MemoryCredentialStore
    ) -> None:
        auth = await _logged_in(make_auth, backend, REFRESHABLE_LOGIN)
        backend.add("POST", "/api/refresh", reply(200, {"token": "2|new", "refresh_token": "r2"}))
        backend.add("POST", "/logout", reply(200, {}))
        gate = backend.hold("POST", "/api/refresh")

        refresh = asyncio.create_task(auth.refresh_token())
        await asyncio.wait_for(backend.wait_held(), 1)
        await auth.logout()
        gate.set()

        with pytest.raises(SanctumError) as exc_info:
            await refresh
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION
        assert auth.auth_state is AuthState.UNAUTHENTICATED
        assert auth.current_token is None
        assert store.data == {}


class TestAbilities:
    async def test_listed_abilities(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend, {**LOGIN_BODY, "abilities": ["read", "write"]})

        assert auth.has_ability("read")
        assert not auth.has_ability("delete")
        assert auth.has_any_ability(["delete", "write"])
        assert not auth.has_any_ability(["delete"])
        assert auth.has_all_abilities(["read", "write"])
        assert not auth.has_all_abilities(["read", "delete"])
        auth.require_abilities("read")

        with pytest.raises(SanctumError) as exc_info:
            auth.require_abilities("read", "delete")
        assert exc_info.value.kind is ErrorKind.AUTHORIZATION
        assert exc_info.value.required_abilities == ["delete"]
        assert exc_info.value.user_abilities == ["read", "write"]

    async def test_wildcard(self, make_auth, backend: FakeBackend) -> None:
        auth = await _logged_in(make_auth, backend)
        assert auth.has_ability("anything")
        assert auth.has_all_abilities(["a", "b"])

    async def test_without_session(self, make_auth) -> None:
        auth = await make_auth()
        assert not auth.has_ability("read")
        assert not auth.has_any_ability(["read"])
        assert not auth.has_all_abilities([])
        with pytest.raises(SanctumError) as exc_info:
            auth.require_abilities("read")
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION


class TestStateObservation:
    async def test_subscribe_replays_and_follows(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()
        seen: list[AuthState] = []
        unsubscribe = auth.subscribe(seen.append)
        backend.add("POST", "/login", reply(200, LOGIN_BODY))
        backend.add("POST", "/logout", reply(204))

        await auth.login("a@b.com", "secret", "laptop")
        await auth.logout()
        unsubscribe()
        await auth.login("a@b.com", "secret", "laptop")

        assert seen == [
            AuthState.UNAUTHENTICATED,
            AuthState.AUTHENTICATED,
            AuthState.UNAUTHENTICATED,
        ]

    async def test_state_stream(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()
        backend.add("POST", "/login", reply(200, LOGIN_BODY))
        backend.add("POST", "/logout", reply(204))

        async def collect() -> list[AuthState]:
            return [state async for state in auth.states()]

        task = asyncio.ensure_future(collect())
        await asyncio.sleep(0)
        await auth.login("a@b.com", "secret", "laptop")
        await auth.logout()
        await auth.aclose()

        assert await task == [
            AuthState.UNAUTHENTICATED,
            AuthState.AUTHENTICATED,
            AuthState.UNAUTHENTICATED,
        ]


class TestResilience:
    async def test_transient_failures_retried(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()
        backend.add("GET", "/api/data", reply(503))

        with pytest.raises(SanctumError):
            await auth.get("/api/data")

        assert len(backend.calls("GET", "/api/data")) == auth.config.retry_config.max_retries + 1

    async def test_not_found_attempted_once(self, make_auth, backend: FakeBackend) -> None:
        auth = await make_auth()

        with pytest.raises(SanctumError) as exc_info:
            await auth.get("/api/missing")

        assert exc_info.value.status_code == 404
        assert len(backend.calls("GET", "/api/missing")) == 1

    async def test_csrf_mismatch_healed(self, make_auth, backend: FakeBackend) -> None:
        backend.add("GET", CSRF_PATH, reply(204, headers={"Set-Cookie": "XSRF-TOKEN=abc; Path=/"}))
        backend.add("POST", "/api/items", reply(419), reply(201, {"id": 1}))
        auth = await make_auth(auth_mode=AuthMode.SPA)

        response = await auth.post("/api/items", json={"name": "x"})

        assert response.status_code == 201
        assert len(backend.calls("POST", "/api/items")) == 2

    async def test_repeated_csrf_mismatch(self, make_auth, backend: FakeBackend) -> None:
        backend.add("GET", CSRF_PATH, reply(204, headers={"Set-Cookie": "XSRF-TOKEN=abc; Path=/"}))
        backend.add("POST", "/api/items", reply(419))
        auth = await make_auth(auth_mode=AuthMode.SPA)

        with pytest.raises(SanctumError) as exc_info:
            await auth.post("/api/items")

        assert exc_info.value.kind is ErrorKind.CSRF
        assert len(backend.calls("POST", "/api/items")) == 2


class TestStoreFailures:
    @pytest.fixture
    def store(self) -> LockedStore:
        return LockedStore()

    async def test_malformed_token_with_locked_store(
        self, make_auth, backend: FakeBackend, store: LockedStore, log_output
    ) -> None:
        auth = await _logged_in(make_auth, backend)
        await store.set_token("bad")
        store.locked = True
        backend.add("GET", "/api/data", reply(200, {}))

        response = await auth.get("/api/data")

        assert response.status_code == 200
        assert "Authorization" not in backend.calls("GET", "/api/data")[0].headers
        assert "keychain locked" in log_output.getvalue()

    async def test_background_init_failure_is_retrieved(
        self, config: SanctumConfig, logger, backend: FakeBackend, store: LockedStore, log_output
    ) -> None:
        await store.set_token("1|abc")
        store.locked = True
        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            auth = SanctumAuth(config, store=store, logger=logger, http_transport=backend.transport)
            while auth.auth_state is AuthState.VERIFYING:
                await asyncio.sleep(0)
            await asyncio.sleep(0)
            await auth.aclose()
            del auth
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert "session restore failed: keychain locked" in log_output.getvalue()
        assert not [c for c in reported if "never retrieved" in c.get("message", "")]
