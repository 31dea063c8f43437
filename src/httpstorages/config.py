"""Where httpstorages keeps its files, and which storage settings win.

Three concerns live here:

* **Directories.** On Linux and the BSDs the config, cache and data
  directories follow the XDG base-directory variables; elsewhere everything
  sits under ``~/.httpstorages/``. Engines without an explicit path store
  their files in the cache directory.
* **Config files.** The user file ``<config dir>/config.json`` holds a
  :class:`~httpstorages.models.GlobalConfig`. A project can drop an
  ``httpstorages.json`` in its working directory whose ``storage`` object
  overrides individual fields.
* **Resolution.** :func:`resolve_config` layers defaults, user file, project
  file, ``HTTPSTORAGES_*`` variables and CLI flags into one
  :class:`~httpstorages.models.StorageConfig`.

Writes go through :func:`_atomic_write`, so a crash never leaves a
half-written config file behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from httpstorages.exceptions import ConfigError
from httpstorages.models import GlobalConfig, StorageConfig

_APP_NAME = "httpstorages"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "httpstorages.json"

ENV_BACKEND = "HTTPSTORAGES_BACKEND"
ENV_PATH = "HTTPSTORAGES_PATH"
ENV_TTL = "HTTPSTORAGES_TTL"

# kind -> (XDG variable, default under $HOME, sub-directory on other platforms)
_DIRS: dict[str, tuple[str, tuple[str, ...], Optional[str]]] = {
    "config": ("XDG_CONFIG_HOME", (".config",), None),
    "cache": ("XDG_CACHE_HOME", (".cache",), "cache"),
    "data": ("XDG_DATA_HOME", (".local", "share"), "data"),
}


# --- Directories ---


def _is_xdg_platform() -> bool:
    """True on Linux and the BSDs."""
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    """Resolve and create the *kind* directory (``config``, ``cache`` or ``data``)."""
    env_var, home_segments, fallback_sub = _DIRS[kind]
    if _is_xdg_platform():
        base = os.environ.get(env_var) or str(Path.home().joinpath(*home_segments))
        path = Path(base) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if fallback_sub:
            path = path / fallback_sub
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory holding ``config.json``."""
    return _app_dir("config")


def get_cache_dir() -> Path:
    """Default home of engine files (``diskcache/``, ``storage.db``)."""
    return _app_dir("cache")


def get_data_dir() -> Path:
    """Directory for crash logs."""
    return _app_dir("data")


def _atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data* in one rename.

    The temp file is created next to *path* so ``os.replace`` stays on one
    filesystem. It is removed again if anything fails before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        mode="w",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
        encoding="utf-8",
    )
    try:
        with handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(handle.name, path)
    except BaseException:
        try:
            os.unlink(handle.name)
        except OSError:
            pass
        raise


# --- Config files ---


def _read_json(path: Path, label: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid {label} config at {path}: {exc}") from exc


def load_global_config() -> GlobalConfig:
    """Read the user config file, or return defaults when there is none.

    Raises:
        ConfigError: If the file is not JSON or does not validate.
    """
    path = get_config_dir() / _CONFIG_FILENAME
    if not path.is_file():
        return GlobalConfig()
    data = _read_json(path, "global")
    try:
        return GlobalConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Write the user config file atomically."""
    text = json.dumps(config.model_dump(mode="json"), indent=2) + "\n"
    _atomic_write(get_config_dir() / _CONFIG_FILENAME, text)


def load_project_config() -> Optional[dict[str, Any]]:
    """Read ``./httpstorages.json``; ``None`` when the file is absent.

    Raises:
        ConfigError: If the file is not valid JSON.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    return _read_json(path, "project")


# --- Resolution ---


def resolve_config(
    cli_backend: Optional[str] = None,
    cli_path: Optional[str] = None,
) -> StorageConfig:
    """Build the effective storage settings.

    Later layers override earlier ones field by field:

    1. model defaults
    2. user config file
    3. ``./httpstorages.json`` (its ``storage`` object)
    4. ``HTTPSTORAGES_BACKEND``, ``HTTPSTORAGES_PATH``, ``HTTPSTORAGES_TTL``
    5. ``--backend`` / ``--path``

    Raises:
        ConfigError: If a layer is unreadable or the merged result is invalid.
    """
    data = load_global_config().storage.model_dump()

    project = load_project_config()
    if project is not None:
        storage = project.get("storage", {})
        if not isinstance(storage, dict):
            raise ConfigError("Project config 'storage' must be an object")
        data.update(storage)

    for env_var, field in ((ENV_BACKEND, "backend"), (ENV_PATH, "path"), (ENV_TTL, "default_ttl_seconds")):
        if os.environ.get(env_var):
            data[field] = os.environ[env_var]

    if cli_backend is not None:
        data["backend"] = cli_backend
    if cli_path is not None:
        data["path"] = cli_path

    try:
        return StorageConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid storage configuration: {exc}") from exc
