from __future__ import annotations

import sys
from pathlib import Path

import pytest
from google.auth.exceptions import RefreshError

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fake_sheets import FakeSheetsService
from haccp_backup import sheets_client
from haccp_backup.errors import (
    SpreadsheetNotFound,
    SpreadsheetPermissionDenied,
    SpreadsheetUnreachable,
    WriteExhausted,
)


def _client(service: FakeSheetsService, sleeps=None) -> sheets_client.SheetSyncClient:
    recorder = sleeps if sleeps is not None else []
    return sheets_client.SheetSyncClient("sheet-123", service, sleep=recorder.append)


MATRIX = [["ID", "이름"], ["ccp-1", "가열"], ["ccp-2", "냉각"]]


def test_list_sheets_returns_titles_and_ids() -> None:
    service = FakeSheetsService(["Sheet1", "OvenA"])

    sheets = _client(service).list_sheets()

    assert [(s.title, s.sheet_id) for s in sheets] == [("Sheet1", 1000), ("OvenA", 1001)]


@pytest.mark.parametrize(
    "status, error_type",
    [
        (404, SpreadsheetNotFound),
        (403, SpreadsheetPermissionDenied),
        (400, SpreadsheetUnreachable),
    ],
)
def test_list_sheets_classifies_failures(status, error_type) -> None:
    with pytest.raises(error_type) as excinfo:
        _client(FakeSheetsService(get_status=status)).list_sheets()

    assert isinstance(excinfo.value, SpreadsheetUnreachable)
    assert excinfo.value.status == status
    assert excinfo.value.spreadsheet_id == "sheet-123"


def test_transient_errors_are_retried_with_backoff() -> None:
    sleeps = []
    service = FakeSheetsService(transient=[503, 429])

    sheets = _client(service, sleeps).list_sheets()

    assert [s.title for s in sheets] == ["Sheet1"]
    assert sleeps == [1, 2]


def test_persistent_server_errors_give_up() -> None:
    sleeps = []

    with pytest.raises(SpreadsheetUnreachable):
        _client(FakeSheetsService(get_status=500), sleeps).list_sheets()

    assert len(sleeps) == sheets_client.MAX_RETRY_ATTEMPTS - 1


def test_ensure_sheet_is_idempotent() -> None:
    service = FakeSheetsService()
    client = _client(service)

    first = client.ensure_sheet("OvenA")
    second = client.ensure_sheet("OvenA")

    assert first == second
    assert len(service.calls_of("addSheet")) == 1
    assert list(service.sheet_ids) == ["Sheet1", "OvenA"]


def test_ensure_sheets_creates_only_missing_titles_in_one_batch() -> None:
    service = FakeSheetsService(["년간 대시보드"])

    ids = _client(service).ensure_sheets(["년간 대시보드", "월간 대시보드", "OvenA", "OvenA"])

    assert list(ids) == ["년간 대시보드", "월간 대시보드", "OvenA"]
    assert service.calls_of("addSheet") == [("addSheet", ["월간 대시보드", "OvenA"])]


def test_write_values_uses_primary_range_first() -> None:
    service = FakeSheetsService(["OvenA"])

    outcome = _client(service).write_values("OvenA", MATRIX)

    assert outcome.strategy == "primary"
    assert outcome.updated_rows == 3
    assert outcome.updated_cells == 6
    assert service.calls_of("update") == [("update", "OvenA!A1", "USER_ENTERED")]
    assert service.grids["OvenA"] == MATRIX


def test_write_falls_back_to_quoted_range_when_primary_is_rejected() -> None:
    service = FakeSheetsService(["Oven A"], reject_range=lambda r: 400 if r == "Oven A!A1" else None)

    outcome = _client(service).write_values("Oven A", MATRIX)

    assert outcome.strategy == "quoted"
    assert [a["strategy"] for a in outcome.attempts] == ["primary", "quoted"]
    assert outcome.attempts[0]["success"] is False
    assert outcome.attempts[0]["status"] == 400
    assert service.grids["Oven A"] == MATRIX


def test_write_ladder_order_and_update_cells_rung() -> None:
    service = FakeSheetsService(["Sheet1", "OvenA"], reject_range=lambda r: 400)
    client = _client(service)
    client.list_sheets()

    outcome = client.write_values("OvenA", [["값", 1.5, True, None]])

    ranges = [call[1] for call in service.calls_of("update")]
    assert ranges == ["OvenA!A1", "'OvenA'!A1", "'OvenA'!A:D", "A1:D1"]
    assert outcome.strategy == "update_cells"
    assert service.calls_of("updateCells") == [("updateCells", 1001)]
    assert service.grids["OvenA"] == [["값", 1.5, True, ""]]


def test_write_exhausted_carries_every_attempt() -> None:
    service = FakeSheetsService(["OvenA"], reject_range=lambda r: 400, update_cells_status=500)

    with pytest.raises(WriteExhausted) as excinfo:
        _client(service).write_values("OvenA", MATRIX)

    strategies = [attempt["strategy"] for attempt in excinfo.value.attempts]
    assert strategies == list(sheets_client.WRITE_STRATEGIES)
    assert not any(attempt["success"] for attempt in excinfo.value.attempts)


def test_write_exhausted_records_transport_timeouts() -> None:
    timeout = TimeoutError("timed out")
    service = FakeSheetsService(["OvenA"], raises={"update": timeout, "updateCells": timeout})
    client = _client(service)
    client.list_sheets()

    with pytest.raises(WriteExhausted) as excinfo:
        client.write_values("OvenA", MATRIX)

    attempts = excinfo.value.attempts
    assert [attempt["strategy"] for attempt in attempts] == list(sheets_client.WRITE_STRATEGIES)
    assert all(attempt["status"] == 0 and attempt["error"] == "timed out" for attempt in attempts)
    assert len(service.calls_of("updateCells")) == 1


def test_rejected_token_is_unreachable_not_a_ladder_failure() -> None:
    service = FakeSheetsService(["OvenA"], raises={"update": RefreshError("token expired")})

    with pytest.raises(SpreadsheetUnreachable) as excinfo:
        _client(service).write_values("OvenA", MATRIX)

    assert excinfo.value.status == 401
    assert excinfo.value.to_dict()["kind"] == "SpreadsheetUnreachable"
    assert len(service.calls_of("update")) == 1


def test_list_sheets_maps_refresh_error_to_unreachable() -> None:
    service = FakeSheetsService(raises={"get": RefreshError("invalid_grant")})

    with pytest.raises(SpreadsheetUnreachable) as excinfo:
        _client(service).list_sheets()

    assert excinfo.value.status == 401
    assert "system clock" in excinfo.value.hint


def test_ensure_sheets_matches_existing_titles_regardless_of_case() -> None:
    service = FakeSheetsService(["Sheet1", "OvenA"])
    client = _client(service)

    ids = client.ensure_sheets(["ovena", "OVENA", "OvenB"])

    assert ids == {"ovena": 1001, "OvenB": 1002}
    assert service.calls_of("addSheet") == [("addSheet", ["OvenB"])]
    assert client.sheet_id_for("OVENB") == 1002


def test_clear_failure_is_swallowed() -> None:
    service = FakeSheetsService(["OvenA"], clear_status=400)

    assert _client(service).clear_range("OvenA") is False
    assert service.calls_of("clear") == [("clear", "'OvenA'!A1:Z1000")]


def test_formatting_failure_is_swallowed(caplog) -> None:
    service = FakeSheetsService(["OvenA"], format_status=400)

    applied = _client(service).apply_formatting(1000, [{"autoResizeDimensions": {}}])

    assert applied is False
    assert "Formatting sheet 1000 failed" in caplog.text


@pytest.mark.parametrize("index, expected", [(1, "A"), (15, "O"), (26, "Z"), (27, "AA"), (52, "AZ")])
def test_column_letter(index, expected) -> None:
    assert sheets_client._column_letter(index) == expected


def test_quote_title_escapes_single_quotes() -> None:
    assert sheets_client._quote_title("Bob's Oven") == "'Bob''s Oven'"
