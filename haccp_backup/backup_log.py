"""Append-only audit trail of backup runs stored under ``backup_log:<ms>`` keys."""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

LOG_PREFIX = "backup_log:"

PENDING = "pending"
SUCCESS = "success"
PARTIAL = "partial"
FAILED = "failed"
TERMINAL_STATUSES = (SUCCESS, PARTIAL, FAILED)


def _iso(moment: dt.datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


@dataclass
class BackupLogEntry:
    id: str
    started_at: str
    status: str = PENDING
    document_type: str = ""
    record_count: int = 0
    trigger: str = "manual"
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BackupLogEntry":
        known = {name: payload[name] for name in cls.__dataclass_fields__ if name in payload}
        known.setdefault("id", "")
        known.setdefault("started_at", "")
        return cls(**known)


class BackupLogBook:
    """Create and finish log entries; each entry gets exactly one terminal write."""

    def __init__(
        self,
        store,
        *,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
        millis: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self._store = store
        self._clock = clock
        self._millis = millis
        self._lock = threading.Lock()
        self._last_ms = 0
        self._open: Dict[str, BackupLogEntry] = {}

    def _next_id(self) -> str:
        with self._lock:
            stamp = max(self._millis(), self._last_ms + 1)
            self._last_ms = stamp
        return f"{LOG_PREFIX}{stamp}"

    def open(self, document_type: str, *, trigger: str = "manual", record_count: int = 0) -> BackupLogEntry:
        entry = BackupLogEntry(
            id=self._next_id(),
            started_at=_iso(self._clock()),
            document_type=document_type,
            record_count=record_count,
            trigger=trigger,
        )
        self._store.set(entry.id, entry.to_dict())
        self._open[entry.id] = entry
        logger.debug("Opened backup log %s (%s, %s)", entry.id, document_type, trigger)
        return entry

    def finish(
        self,
        entry: BackupLogEntry,
        status: str,
        *,
        record_count: Optional[int] = None,
        error: Optional[Dict[str, Any]] = None,
        results: Optional[List[Dict[str, Any]]] = None,
    ) -> BackupLogEntry:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal backup status: {status}")
        if self._open.pop(entry.id, None) is None:
            raise RuntimeError(f"Backup log {entry.id} was already finished")

        now = _iso(self._clock())
        entry.status = status
        if status == FAILED:
            entry.failed_at = now
        else:
            entry.completed_at = now
        if record_count is not None:
            entry.record_count = record_count
        if error is not None:
            entry.error = error
        if results is not None:
            entry.results = list(results)
        self._store.set(entry.id, entry.to_dict())
        logger.info("Backup log %s finished: %s", entry.id, status)
        return entry

    def list_entries(self, limit: Optional[int] = 20) -> List[BackupLogEntry]:
        """Return stored entries, newest first."""

        raw = [item for item in self._store.get_by_prefix(LOG_PREFIX) if isinstance(item, dict)]
        entries = [BackupLogEntry.from_dict(item) for item in raw]
        entries.sort(key=lambda entry: _id_stamp(entry.id), reverse=True)
        return entries if limit is None else entries[:limit]


def _id_stamp(entry_id: str) -> int:
    try:
        return int(entry_id[len(LOG_PREFIX):])
    except ValueError:
        return 0


__all__ = [
    "BackupLogBook",
    "BackupLogEntry",
    "FAILED",
    "LOG_PREFIX",
    "PARTIAL",
    "PENDING",
    "SUCCESS",
]
