"""File lock keeping a single scheduler process per data directory."""
from __future__ import annotations

import os
from pathlib import Path
from typing import IO, Optional

from haccp_backup import app_paths

if os.name == "nt":  # pragma: no cover - Windows specific branch
    import msvcrt
else:  # pragma: no cover - POSIX branch
    import fcntl  # type: ignore[import-not-found]


class SchedulerAlreadyRunning(RuntimeError):
    """Raised when another process already owns the backup scheduler."""


def _lock(handle: IO[bytes]) -> None:
    if os.name == "nt":  # pragma: no cover - Windows specific branch
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:  # pragma: no cover - POSIX branch
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(handle: IO[bytes]) -> None:
    if os.name == "nt":  # pragma: no cover - Windows specific branch
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:  # pragma: no cover - POSIX branch
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class SchedulerLock:
    """Context manager holding ``scheduler.lock`` under ``directory``."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.path = Path(directory or app_paths.APP_DIR) / "scheduler.lock"
        self._handle: Optional[IO[bytes]] = None

    def acquire(self) -> "SchedulerLock":
        app_paths.ensure_directory(self.path.parent)
        handle = open(self.path, "a+b")
        handle.seek(0)
        try:
            _lock(handle)
        except OSError as exc:
            handle.close()
            raise SchedulerAlreadyRunning(f"Another backup scheduler holds {self.path}") from exc

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()).encode("utf-8"))
        handle.flush()
        self._handle = handle
        return self

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        try:
            handle.seek(0)
            _unlock(handle)
        finally:
            handle.close()
            self._handle = None
        try:
            self.path.unlink()
        except OSError:
            pass

    def __enter__(self) -> "SchedulerLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = ["SchedulerAlreadyRunning", "SchedulerLock"]
