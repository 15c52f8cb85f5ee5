"""Log file setup for the backup engine and its CLI."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from haccp_backup import app_paths

LOG_FILENAME = "haccp_backup.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LEVEL_ENV_VAR = "HACCP_BACKUP_LOG_LEVEL"

_LOG_PATH: Optional[Path] = None


def _level_from_env(default: int) -> int:
    name = os.getenv(LEVEL_ENV_VAR, "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def _has_handler(root: logging.Logger, kind: type, path: Optional[Path] = None) -> bool:
    for handler in root.handlers:
        if type(handler) is not kind:
            continue
        if path is None or getattr(handler, "baseFilename", None) == str(path):
            return True
    return False


def configure_logging(level: int = logging.INFO, *, console: bool = False) -> Path:
    """Send log records to ``<app dir>/logs/haccp_backup.log``.

    ``HACCP_BACKUP_LOG_LEVEL`` (``DEBUG``, ``WARNING``...) overrides ``level``.
    ``console`` also echoes records to stderr; ``serve`` uses it so the
    scheduler's activity is visible in the terminal it runs in.  Calling this
    again only adds what is missing.
    """

    global _LOG_PATH

    log_path = _LOG_PATH or app_paths.logs_path(LOG_FILENAME)
    root = logging.getLogger()
    effective = _level_from_env(level)
    root.setLevel(min(root.level, effective) if root.handlers else effective)
    formatter = logging.Formatter(LOG_FORMAT)

    if not _has_handler(root, logging.FileHandler, log_path):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if console and not _has_handler(root, logging.StreamHandler):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    if _LOG_PATH is None:
        _LOG_PATH = log_path
        root.debug("Logging to %s", log_path)
    return log_path


def get_log_path() -> Path:
    return _LOG_PATH if _LOG_PATH is not None else configure_logging()


__all__ = ["LOG_FILENAME", "LOG_FORMAT", "configure_logging", "get_log_path"]
