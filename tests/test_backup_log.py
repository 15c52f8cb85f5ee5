from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from haccp_backup.backup_log import LOG_PREFIX, BackupLogBook
from kv_store import InMemoryKeyValueStore

NOW = dt.datetime(2024, 3, 15, 18, 0, 0)


def _book(store=None, millis=lambda: 1_710_525_600_000) -> BackupLogBook:
    return BackupLogBook(store or InMemoryKeyValueStore(), clock=lambda: NOW, millis=millis)


def test_ids_are_unique_even_within_one_millisecond() -> None:
    book = _book()

    ids = [book.open("ccp").id for _ in range(3)]

    assert ids == [f"{LOG_PREFIX}1710525600000", f"{LOG_PREFIX}1710525600001", f"{LOG_PREFIX}1710525600002"]


def test_open_writes_a_pending_entry() -> None:
    store = InMemoryKeyValueStore()
    entry = _book(store).open("ccp", trigger="scheduled")

    stored = store.get(entry.id)
    assert stored["status"] == "pending"
    assert stored["trigger"] == "scheduled"
    assert stored["started_at"] == "2024-03-15T18:00:00.000"
    assert "completed_at" not in stored


def test_finish_records_terminal_status_once() -> None:
    store = InMemoryKeyValueStore()
    book = _book(store)
    entry = book.open("ccp")

    book.finish(entry, "success", record_count=4, results=[{"documentType": "ccp"}])

    stored = store.get(entry.id)
    assert stored["status"] == "success"
    assert stored["record_count"] == 4
    assert stored["completed_at"] == "2024-03-15T18:00:00.000"
    with pytest.raises(RuntimeError):
        book.finish(entry, "failed")
    assert store.get(entry.id)["status"] == "success"


def test_failed_entries_carry_failed_at_and_error() -> None:
    store = InMemoryKeyValueStore()
    book = _book(store)
    entry = book.open("ccp")

    book.finish(entry, "failed", error={"kind": "ConfigurationMissing"})

    stored = store.get(entry.id)
    assert stored["failed_at"] == "2024-03-15T18:00:00.000"
    assert stored["error"]["kind"] == "ConfigurationMissing"
    assert "completed_at" not in stored


def test_finish_rejects_non_terminal_status() -> None:
    book = _book()
    entry = book.open("ccp")

    with pytest.raises(ValueError):
        book.finish(entry, "pending")


def test_list_entries_newest_first() -> None:
    stamps = iter([1000, 3000, 2000])
    book = _book(millis=lambda: next(stamps))
    for _ in range(3):
        book.open("ccp")

    assert [entry.id for entry in book.list_entries(limit=2)] == [f"{LOG_PREFIX}3001", f"{LOG_PREFIX}3000"]
