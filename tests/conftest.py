"""Shared test fixtures for sanctum_auth.

Provides the fake backend (see :mod:`fakes`), a logger that records its
output, an in-memory credential store, and an engine factory wired to all
of them.
"""

from __future__ import annotations

import io
from typing import Any, AsyncIterator, Awaitable, Callable

import pytest
from rich.console import Console

from sanctum_auth.auth.credential_store import MemoryCredentialStore
from sanctum_auth.auth.engine import SanctumAuth
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import RetryConfig, SanctumConfig

from fakes import BASE_URL, FakeBackend


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def log_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_output: io.StringIO) -> SanctumLogger:
    """Debug-enabled logger writing plain text into ``log_output``."""
    console = Console(file=log_output, no_color=True, width=200)
    return SanctumLogger(debug_mode=True, console=console)


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def config() -> SanctumConfig:
    return SanctumConfig(
        base_url=BASE_URL,
        retry_config=RetryConfig(initial_delay=0.0, max_delay=0.0),
    )


async def _no_sleep(delay: float) -> None:
    return None


EngineFactory = Callable[..., Awaitable[SanctumAuth]]


@pytest.fixture
async def make_auth(
    backend: FakeBackend,
    store: MemoryCredentialStore,
    logger: SanctumLogger,
    config: SanctumConfig,
) -> AsyncIterator[EngineFactory]:
    """Factory for engines talking to ``backend``.  Engines are closed afterwards.

    Keyword arguments override the config fields; ``initialize=False``
    returns the engine before its initialization has been awaited.
    """
    engines: list[SanctumAuth] = []

    async def factory(initialize: bool = True, **overrides: Any) -> SanctumAuth:
        engine_config = config.model_copy(update=overrides) if overrides else config
        auth = SanctumAuth(
            engine_config,
            store=store,
            logger=logger,
            http_transport=backend.transport,
            sleep=_no_sleep,
        )
        engines.append(auth)
        if initialize:
            await auth.initialize()
        return auth

    yield factory
    for auth in engines:
        await auth.aclose()
