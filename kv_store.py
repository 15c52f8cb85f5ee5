"""SQLite-backed key-value store used by the HACCP backup engine."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from haccp_backup import app_paths

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(
    os.environ.get("HACCP_BACKUP_DB_PATH", str(app_paths.data_path("haccp_kv.db")))
).resolve()

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def get_by_prefix(self, prefix: str) -> List[Any]: ...


class SqliteKeyValueStore:
    """JSON values keyed by string, persisted in a single SQLite table."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else DEFAULT_DB_PATH
        self._lock = threading.Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_SCHEMA_SQL)

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._path), timeout=30)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[Any]:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, payload),
            )

    def delete(self, key: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def get_by_prefix(self, prefix: str) -> List[Any]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT key, value FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",),
            ).fetchall()
        values: List[Any] = []
        for key, raw in rows:
            try:
                values.append(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("Skipping undecodable value for key %s", key)
        return values


class InMemoryKeyValueStore:
    """Dictionary-backed store with the same surface as :class:`SqliteKeyValueStore`."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._data[key] = payload

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def get_by_prefix(self, prefix: str) -> List[Any]:
        with self._lock:
            items = sorted((key, raw) for key, raw in self._data.items() if key.startswith(prefix))
        return [json.loads(raw) for _, raw in items]

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


__all__ = [
    "DEFAULT_DB_PATH",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SqliteKeyValueStore",
]
