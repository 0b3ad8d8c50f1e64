"""Credential storage: bearer token, user record, refresh token, abilities.

:class:`CredentialStore` is the abstract key/value contract the engine
depends on (``get_string`` / ``set_string`` / ``delete`` plus a batch
write), with structured helpers layered on top.  Two implementations ship
with the package:

* :class:`MemoryCredentialStore` -- process-local, the default.
* :class:`FileCredentialStore` -- one JSON document under the XDG data
  directory (typically ``~/.local/share/sanctum-auth/credentials/<name>.json``),
  written atomically with ``0o600`` permissions.

Read failures are treated as "absent"; write failures propagate.  Session
writes (token + user + abilities) go through :meth:`CredentialStore.set_many`
so a reader never sees a token without its user.
"""

from __future__ import annotations

import abc
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from sanctum_auth import constants as C
from sanctum_auth.config import atomic_write, get_data_dir
from sanctum_auth.models import User


@dataclass(frozen=True)
class StorageKeys:
    """Keys under which one engine keeps its credentials."""

    token: str = C.STORAGE_TOKEN
    user: str = C.STORAGE_USER
    refresh_token: str = C.STORAGE_REFRESH_TOKEN
    abilities: str = C.STORAGE_ABILITIES

    @classmethod
    def for_key(cls, storage_key: str) -> StorageKeys:
        """Derive the key set from a config ``storage_key``.

        The default key maps to the stock names; any other key namespaces
        the user, refresh-token and abilities entries after it.
        """
        if storage_key == C.STORAGE_TOKEN:
            return cls()
        return cls(
            token=storage_key,
            user=f"{storage_key}.user",
            refresh_token=f"{storage_key}.refresh_token",
            abilities=f"{storage_key}.abilities",
        )

    def all(self) -> tuple[str, ...]:
        return (self.token, self.user, self.refresh_token, self.abilities)


class CredentialStore(abc.ABC):
    """Asynchronous string key/value store with credential helpers.

    Args:
        keys: Key set used by the structured helpers.
    """

    def __init__(self, keys: Optional[StorageKeys] = None) -> None:
        self.keys = keys or StorageKeys()

    # ------------------------------------------------------------------ #
    # Primitive operations
    # ------------------------------------------------------------------ #

    @abc.abstractmethod
    async def get_string(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None``."""

    @abc.abstractmethod
    async def set_string(self, key: str, value: str) -> None:
        """Store *value* under *key*."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  Missing keys are ignored."""

    async def set_many(self, items: Mapping[str, Optional[str]]) -> None:
        """Write several keys as one unit; ``None`` values delete.

        The default implementation writes sequentially and restores the
        previous values if any write fails.  Subclasses that can write
        atomically override it.
        """
        previous = {key: await self._read(key) for key in items}
        try:
            for key, value in items.items():
                if value is None:
                    await self.delete(key)
                else:
                    await self.set_string(key, value)
        except BaseException:
            for key, value in previous.items():
                if value is None:
                    await self.delete(key)
                else:
                    await self.set_string(key, value)
            raise

    async def delete_many(self, keys: Iterable[str]) -> None:
        await self.set_many({key: None for key in keys})

    async def _read(self, key: str) -> Optional[str]:
        try:
            return await self.get_string(key)
        except Exception:
            return None

    # ------------------------------------------------------------------ #
    # Structured helpers
    # ------------------------------------------------------------------ #

    async def get_token(self) -> Optional[str]:
        return await self._read(self.keys.token)

    async def set_token(self, token: str) -> None:
        await self.set_string(self.keys.token, token)

    async def delete_token(self) -> None:
        await self.delete(self.keys.token)

    async def get_refresh_token(self) -> Optional[str]:
        return await self._read(self.keys.refresh_token)

    async def set_refresh_token(self, token: str) -> None:
        await self.set_string(self.keys.refresh_token, token)

    async def get_user(self) -> Optional[User]:
        """Return the stored user, or ``None`` if missing or unreadable."""
        raw = await self._read(self.keys.user)
        if not raw:
            return None
        try:
            return User.model_validate_json(raw)
        except ValueError:
            return None

    async def set_user(self, user: User) -> None:
        await self.set_string(self.keys.user, _dump_user(user))

    async def get_abilities(self) -> Optional[list[str]]:
        raw = await self._read(self.keys.abilities)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, list):
            return None
        return [str(item) for item in data]

    async def set_abilities(self, abilities: Iterable[str]) -> None:
        await self.set_string(self.keys.abilities, json.dumps(list(abilities)))

    async def store_session(
        self,
        token: str,
        user: User,
        abilities: Optional[Iterable[str]] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist a complete session in one batch.

        Abilities and refresh token are cleared when not given, so nothing
        from a previous session survives.
        """
        await self.set_many(
            {
                self.keys.token: token,
                self.keys.user: _dump_user(user),
                self.keys.abilities: json.dumps(list(abilities)) if abilities is not None else None,
                self.keys.refresh_token: refresh_token,
            }
        )

    async def clear_session(self) -> None:
        """Remove every credential this store manages."""
        await self.delete_many(self.keys.all())


def _dump_user(user: User) -> str:
    return user.model_dump_json(exclude_none=True)


class MemoryCredentialStore(CredentialStore):
    """Process-local store backed by a dict.  Batch writes are atomic."""

    def __init__(
        self,
        keys: Optional[StorageKeys] = None,
        initial: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(keys)
        self._data: dict[str, str] = dict(initial or {})

    @property
    def data(self) -> dict[str, str]:
        """A copy of the stored values."""
        return dict(self._data)

    async def get_string(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_string(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def set_many(self, items: Mapping[str, Optional[str]]) -> None:
        updated = dict(self._data)
        for key, value in items.items():
            if value is None:
                updated.pop(key, None)
            else:
                updated[key] = value
        self._data = updated


def _credentials_dir() -> Path:
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


class FileCredentialStore(CredentialStore):
    """Store persisted as a single JSON object on disk.

    Every write replaces the whole document atomically, so a batch is
    all-or-nothing even across a crash.

    Args:
        name: Document name; the file is ``<credentials dir>/<name>.json``.
        keys: Key set used by the structured helpers.
        path: Explicit file path, overriding *name*.

    Example::

        store = FileCredentialStore("my-app")
        await store.set_token("1|abc")
        assert await store.get_token() == "1|abc"
    """

    def __init__(
        self,
        name: str = "default",
        keys: Optional[StorageKeys] = None,
        path: Optional[Path] = None,
    ) -> None:
        super().__init__(keys)
        self._path = Path(path) if path is not None else _credentials_dir() / f"{name}.json"

    @property
    def path(self) -> Path:
        return self._path

    async def get_string(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    async def set_string(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def delete(self, key: str) -> None:
        await self.set_many({key: None})

    async def set_many(self, items: Mapping[str, Optional[str]]) -> None:
        data = self._load()
        for key, value in items.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._save(data)

    def _load(self) -> dict[str, Any]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        if not data:
            if self._path.is_file():
                self._path.unlink()
            return
        atomic_write(self._path, json.dumps(data, indent=2, sort_keys=True) + "\n", mode=0o600)
