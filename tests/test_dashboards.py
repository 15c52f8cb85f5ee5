from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from haccp_backup import dashboards, documents, formatting

NOW = dt.datetime(2024, 3, 15, 18, 0)


def _ccp(record_id: str, created: str, process: str = "OvenA", **extra):
    record = {
        "id": record_id,
        "name": "가열",
        "process": process,
        "criticalLimit": {"min": 75, "max": 90},
        "currentValue": 80,
        "createdAt": created,
    }
    record.update(extra)
    return record


RECORDS = [
    _ccp("a1", "2024-03-05T08:00:00Z", lastChecked="2024-03-05T09:00:00Z"),
    _ccp("a2", "2024-03-05T10:00:00Z", currentValue=99),
    _ccp("a3", "2024-01-20T10:00:00Z"),
    _ccp("b1", "2024-03-14T07:00:00Z", process="OvenB", lastChecked="2024-03-14T08:00:00Z"),
    _ccp("b2", "2023-12-31T23:00:00Z", process="OvenB"),
]


def test_yearly_dashboard_counts_per_month() -> None:
    layout = dashboards.yearly_dashboard(RECORDS, NOW)

    assert layout.sheet_name == dashboards.YEARLY_SHEET
    assert layout.values[0][0] == "2024년 HACCP CCP 관리 년간 대시보드"
    assert layout.values[dashboards.YEARLY_HEADER_ROW] == dashboards.YEARLY_HEADER
    months = layout.values[dashboards.YEARLY_HEADER_ROW + 1 : dashboards.YEARLY_HEADER_ROW + 13]
    assert months[0] == ["1월", 1, 0, 1, "0%"]
    assert months[2] == ["3월", 3, 1, 2, "67%"]
    assert months[11] == ["12월", 0, 0, 0, "0%"]
    assert layout.values[-1] == ["전체", 4, 1, 3, "50%"]
    assert all(len(row) == len(dashboards.YEARLY_HEADER) for row in layout.values)


def test_monthly_dashboard_has_a_row_per_day_and_a_total() -> None:
    layout = dashboards.monthly_dashboard(RECORDS, NOW)

    assert layout.values[dashboards.FILTER_ROW][:2] == ["📅 월별 필터:", "전체"]
    assert layout.values[dashboards.HEADER_ROW] == dashboards.MONTHLY_HEADER
    days = layout.values[dashboards.HEADER_ROW + 1 : dashboards.HEADER_ROW + 32]
    assert days[4] == ["3월 5일", 2, 1, 1]
    assert days[13] == ["3월 14일", 1, 0, 1]
    assert days[30][0] == "3월 31일"
    assert layout.values[-1] == ["합계", 3, 1, 2]


def test_monthly_dashboard_formatting_places_dropdown_on_filter_row() -> None:
    requests = dashboards.monthly_dashboard([], NOW).format_requests(42)

    dropdowns = [r["setDataValidation"] for r in requests if "setDataValidation" in r]
    assert len(dropdowns) == 1
    assert dropdowns[0]["range"]["startRowIndex"] == dashboards.FILTER_ROW
    options = [v["userEnteredValue"] for v in dropdowns[0]["rule"]["condition"]["values"]]
    assert options == list(formatting.MONTH_OPTIONS)
    assert len(options) == 13
    assert requests[0]["mergeCells"]["range"]["sheetId"] == 42


def test_process_sheet_places_header_on_sixth_row_newest_first() -> None:
    layout = dashboards.process_sheet("OvenA", [r for r in RECORDS if r["process"] == "OvenA"])
    header = documents.header_for("ccp")

    assert layout.values[0][0] == "OvenA CCP 관리 (월별 현황)"
    assert layout.values[dashboards.HEADER_ROW][: len(header)] == header
    data = layout.values[dashboards.HEADER_ROW + 1 :]
    ids = [dict(zip(header, row))["ID"] for row in data]
    assert ids == ["a2", "a1", "a3"]
    assert [dict(zip(header, row))["번호"] for row in data] == ["1", "2", "3"]
    assert layout.record_count == 3


def test_process_sheet_status_rules_target_status_column() -> None:
    layout = dashboards.process_sheet("OvenA", RECORDS[:2])

    requests = layout.format_requests(7)

    rules = [r["addConditionalFormatRule"]["rule"] for r in requests if "addConditionalFormatRule" in r]
    status_column = documents.header_for("ccp").index("상태")
    assert [rule["booleanRule"]["condition"]["values"][0]["userEnteredValue"] for rule in rules] == [
        "critical",
        "normal",
    ]
    for rule in rules:
        assert rule["ranges"][0]["startColumnIndex"] == status_column
        assert rule["ranges"][0]["startRowIndex"] == dashboards.HEADER_ROW + 1
    filters = [r for r in requests if "setBasicFilter" in r]
    assert filters[0]["setBasicFilter"]["filter"]["range"]["startRowIndex"] == dashboards.HEADER_ROW


def test_process_sheet_without_status_column_skips_rules() -> None:
    layout = dashboards.process_sheet("OvenA", RECORDS[:1], fields=[{"name": "ID"}, {"name": "이름"}])

    assert not any("addConditionalFormatRule" in r for r in layout.format_requests(1))


def test_empty_process_sheet_says_no_data() -> None:
    layout = dashboards.process_sheet("OvenC", [])

    assert layout.values[dashboards.HEADER_ROW + 1][0] == "데이터 없음"
    assert layout.record_count == 0


def test_ccp_layouts_put_dashboards_first() -> None:
    names = [layout.sheet_name for layout in dashboards.ccp_layouts(RECORDS, NOW)]

    assert names == [dashboards.YEARLY_SHEET, dashboards.MONTHLY_SHEET, "OvenA", "OvenB"]


def test_document_sheet_is_header_plus_rows() -> None:
    records = [{"id": "v-1", "visitorName": "홍길동"}, {"id": "v-2"}]

    layout = dashboards.document_sheet("visitor-log", "visitor-log_2024_03_15", records)

    assert layout.values[0] == documents.header_for("visitor-log")
    assert len(layout.values) == 3
    assert layout.record_count == 2
