"""Filesystem helpers: XDG data directory, atomic writes, config files.

The SDK itself is configured in-process through
:class:`~sanctum_auth.models.SanctumConfig`.  This module covers the few
places that touch disk:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.sanctum-auth/`` on macOS and Windows.  See :func:`get_data_dir`.
* **Config files** -- :func:`load_config` / :func:`save_config` read and
  write a :class:`~sanctum_auth.models.SanctumConfig` as JSON, for
  applications that keep their backend settings in a file.
* **Atomic writes** -- :func:`atomic_write` (temp file + rename) is shared
  with :class:`~sanctum_auth.auth.credential_store.FileCredentialStore`.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from sanctum_auth.exceptions import SanctumError
from sanctum_auth.models import SanctumConfig

_APP_NAME = "sanctum-auth"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True on platforms that follow the XDG Base Directory spec (Linux/BSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_data_dir() -> Path:
    """Return the data directory (stored credentials), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/sanctum-auth/`` (default
    ``~/.local/share/sanctum-auth/``).  On macOS/Windows:
    ``~/.sanctum-auth/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write *data* to *path* atomically using a temp file and ``os.replace``.

    The temporary file lives in the same directory as *path* so the rename
    is atomic on POSIX.  When *mode* is given it is applied to the temp
    file before any content is written, so secrets are never exposed with
    looser permissions, even momentarily.

    Raises:
        OSError: If the file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config files ---


def load_config(path: Path) -> SanctumConfig:
    """Load and validate a :class:`SanctumConfig` from a JSON file.

    Raises:
        SanctumError: Of kind ``CONFIGURATION`` if the file is missing,
            is not valid JSON, or fails validation.
    """
    path = Path(path)
    if not path.is_file():
        raise SanctumError.configuration(f"Config file not found: {path}", path=str(path))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return SanctumConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise SanctumError.configuration(f"Invalid config at {path}: {exc}", path=str(path)) from exc


def save_config(config: SanctumConfig, path: Path) -> None:
    """Persist *config* as pretty-printed JSON, atomically."""
    data = config.model_dump(mode="json", by_alias=True)
    atomic_write(Path(path), json.dumps(data, indent=2, sort_keys=True) + "\n")
