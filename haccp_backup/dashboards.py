"""Sheet layouts for backups: CCP dashboards, per-process CCP sheets and plain document sheets."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence

from haccp_backup import documents, formatting

YEARLY_SHEET = "년간 대시보드"
MONTHLY_SHEET = "월간 대시보드"

YEARLY_HEADER = ["월", "CCP 관리점 수", "위험 CCP", "정상 CCP", "CCP 점검률"]
MONTHLY_HEADER = ["일자", "CCP 관리점", "위험 CCP", "정상 CCP"]

# Zero-based row positions shared by the value matrices and formatting.
FILTER_ROW = 2
SECTION_ROW = 4
HEADER_ROW = 5
YEARLY_SECTION_ROW = 2
YEARLY_HEADER_ROW = 3


@dataclass
class SheetLayout:
    """Values and formatting for one sheet of a CCP backup."""

    sheet_name: str
    values: List[List[Any]]
    record_count: int
    formatter: Callable[[int], List[Dict[str, Any]]]

    def format_requests(self, sheet_id: int) -> List[Dict[str, Any]]:
        return self.formatter(sheet_id)


def _pad(rows: Sequence[Sequence[Any]], width: int) -> List[List[Any]]:
    return [list(row) + [""] * (width - len(row)) for row in rows]


def _status_counts(records: Sequence[Any]) -> tuple:
    statuses = [documents.ccp_status(record) for record in records]
    return statuses.count("critical"), statuses.count("normal")


def check_rate(records: Sequence[Any]) -> str:
    if not records:
        return "0%"
    checked = sum(1 for record in records if documents.extract(record, "lastChecked"))
    return f"{int(checked * 100 / len(records) + 0.5)}%"


def yearly_dashboard(records: Sequence[Any], now: dt.datetime) -> SheetLayout:
    year = now.year
    width = len(YEARLY_HEADER)
    buckets = documents.bucket_by_month(records, year)

    month_rows = []
    for month, bucket in buckets.items():
        critical, normal = _status_counts(bucket)
        month_rows.append([f"{month}월", len(bucket), critical, normal, check_rate(bucket)])

    in_year = [record for bucket in buckets.values() for record in bucket]
    critical, normal = _status_counts(in_year)
    rows = [
        [f"{year}년 HACCP CCP 관리 년간 대시보드"],
        [],
        ["📊 월별 CCP 관리 현황"],
        YEARLY_HEADER,
        *month_rows,
        [],
        ["📈 년간 총계"],
        ["전체", len(in_year), critical, normal, check_rate(in_year)],
    ]
    total_row_index = len(rows) - 1

    def formatter(sheet_id: int) -> List[Dict[str, Any]]:
        return formatting.yearly_dashboard_requests(
            sheet_id,
            width,
            section_row_index=YEARLY_SECTION_ROW,
            header_row_index=YEARLY_HEADER_ROW,
            data_rows=len(month_rows),
            total_row_index=total_row_index,
        )

    return SheetLayout(YEARLY_SHEET, _pad(rows, width), len(in_year), formatter)


def monthly_dashboard(records: Sequence[Any], now: dt.datetime) -> SheetLayout:
    year, month = now.year, now.month
    width = len(MONTHLY_HEADER)
    buckets = documents.bucket_by_day(records, year, month)

    day_rows = []
    for day, bucket in buckets.items():
        critical, normal = _status_counts(bucket)
        day_rows.append([f"{month}월 {day}일", len(bucket), critical, normal])

    in_month = [record for bucket in buckets.values() for record in bucket]
    critical, normal = _status_counts(in_month)
    rows = [
        [f"{year}년 {month}월 HACCP CCP 관리 월간 대시보드"],
        [],
        ["📅 월별 필터:", "전체", "← 드롭다운에서 월을 선택하세요"],
        [],
        ["📅 일별 CCP 현황"],
        MONTHLY_HEADER,
        *day_rows,
        [],
        ["📊 월간 총계"],
        ["합계", len(in_month), critical, normal],
    ]
    total_row_index = len(rows) - 1

    def formatter(sheet_id: int) -> List[Dict[str, Any]]:
        return formatting.monthly_dashboard_requests(
            sheet_id,
            width,
            filter_row_index=FILTER_ROW,
            section_row_index=SECTION_ROW,
            header_row_index=HEADER_ROW,
            data_rows=len(day_rows),
            total_row_index=total_row_index,
        )

    return SheetLayout(MONTHLY_SHEET, _pad(rows, width), len(in_month), formatter)


def process_sheet(name: str, records: Sequence[Any], fields=None) -> SheetLayout:
    """Detail sheet for one CCP process, newest records first."""

    header = documents.header_for(documents.CCP_TYPE, fields)
    width = len(header)
    data = list(documents.rows_for(documents.CCP_TYPE, documents.newest_first(records), fields))
    filter_row = ["📅 월별 필터:", "전체"]
    if width > 5:
        filter_row += [""] * 3 + ["← 월을 선택하면 해당 월 데이터만 표시됩니다"]
    rows = [
        [f"{name} CCP 관리 (월별 현황)"],
        [],
        filter_row,
        [],
        ["📋 CCP 관리점 상세 현황"],
        header,
        *(data or [["데이터 없음"]]),
    ]
    status_column = header.index("상태") if "상태" in header else None

    def formatter(sheet_id: int) -> List[Dict[str, Any]]:
        return formatting.process_sheet_requests(
            sheet_id,
            width,
            filter_row_index=FILTER_ROW,
            section_row_index=SECTION_ROW,
            header_row_index=HEADER_ROW,
            data_rows=len(data),
            status_column=status_column,
        )

    return SheetLayout(name, _pad(rows, max(width, len(filter_row))), len(data), formatter)


def process_sheets(records: Sequence[Any], fields=None) -> List[SheetLayout]:
    groups = documents.group_for_ccp(records)
    return [process_sheet(name, group, fields) for name, group in groups.items()]


def document_sheet(document_type, sheet_name: str, records: Sequence[Any], fields=None) -> SheetLayout:
    """Header row plus one row per record, for document types with a fixed sheet name."""

    header = documents.header_for(document_type, fields)
    data = list(documents.rows_for(document_type, records, fields))

    def formatter(sheet_id: int) -> List[Dict[str, Any]]:
        return formatting.document_sheet_requests(sheet_id, len(header), len(data))

    return SheetLayout(sheet_name, [header, *data], len(data), formatter)


def ccp_layouts(records: Sequence[Any], now: dt.datetime, fields=None) -> List[SheetLayout]:
    """Every sheet written by a CCP backup, dashboards first."""

    return [yearly_dashboard(records, now), monthly_dashboard(records, now), *process_sheets(records, fields)]


__all__ = [
    "MONTHLY_SHEET",
    "SheetLayout",
    "YEARLY_SHEET",
    "ccp_layouts",
    "check_rate",
    "document_sheet",
    "monthly_dashboard",
    "process_sheet",
    "process_sheets",
    "yearly_dashboard",
]
