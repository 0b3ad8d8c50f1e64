"""Credential and cookie storage used by the engine.

The engine itself lives in :mod:`sanctum_auth.auth.engine` and the token
manager in :mod:`sanctum_auth.auth.tokens`; both are importable from the
top-level package.
"""

from sanctum_auth.auth.cookies import CookieManager, CookieStore, HttpxCookieStore
from sanctum_auth.auth.credential_store import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    StorageKeys,
)

__all__ = [
    "CookieManager",
    "CookieStore",
    "CredentialStore",
    "FileCredentialStore",
    "HttpxCookieStore",
    "MemoryCredentialStore",
    "StorageKeys",
]
