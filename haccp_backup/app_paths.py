"""Where the backup engine keeps its database, logs and lock file."""
from __future__ import annotations

import os
from pathlib import Path

HOME_ENV_VAR = "HACCP_BACKUP_HOME"


def _base_directory() -> Path:
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    # Windows keeps per-user data under LOCALAPPDATA, falling back to APPDATA.
    for env_var in ("LOCALAPPDATA", "APPDATA"):
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "HaccpBackup"
    return Path.home().resolve() / ".haccp_backup"


APP_DIR: Path = _base_directory()
LOG_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _under(root: Path, parts) -> Path:
    target = root.joinpath(*parts)
    ensure_directory(target.parent)
    return target


def data_path(*parts: str) -> Path:
    """Path inside :data:`APP_DIR`; parent directories are created."""

    return _under(APP_DIR, parts)


def logs_path(*parts: str) -> Path:
    return _under(LOG_DIR, parts)


__all__ = ["APP_DIR", "HOME_ENV_VAR", "LOG_DIR", "data_path", "ensure_directory", "logs_path"]
