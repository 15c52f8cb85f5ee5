"""Builders for Sheets ``batchUpdate`` formatting requests.

Every function returns plain request dictionaries so the layouts in
:mod:`haccp_backup.dashboards` can be inspected in tests without a service.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

Color = Tuple[float, float, float]

YEARLY_TITLE_COLOR: Color = (0.2, 0.4, 0.8)
MONTHLY_TITLE_COLOR: Color = (0.2, 0.6, 0.2)
PROCESS_TITLE_COLOR: Color = (0.8, 0.2, 0.2)
DOCUMENT_TITLE_COLOR: Color = (0.3, 0.3, 0.3)
HEADER_COLOR: Color = (0.85, 0.85, 0.85)
SECTION_COLOR: Color = (0.9, 0.93, 1.0)
TOTAL_COLOR: Color = (1.0, 0.95, 0.8)
CRITICAL_COLOR: Color = (1.0, 0.8, 0.8)
NORMAL_COLOR: Color = (0.8, 1.0, 0.8)
WHITE: Color = (1.0, 1.0, 1.0)

MONTH_OPTIONS: Sequence[str] = ["전체"] + [f"{month}월" for month in range(1, 13)]


def rgb(color: Color) -> Dict[str, float]:
    red, green, blue = color
    return {"red": red, "green": green, "blue": blue}


def grid_range(
    sheet_id: int,
    start_row: int,
    end_row: Optional[int] = None,
    start_column: int = 0,
    end_column: Optional[int] = None,
) -> Dict[str, int]:
    """Return a zero-based, end-exclusive ``GridRange``."""

    payload = {"sheetId": sheet_id, "startRowIndex": start_row, "startColumnIndex": start_column}
    if end_row is not None:
        payload["endRowIndex"] = end_row
    if end_column is not None:
        payload["endColumnIndex"] = end_column
    return payload


def _solid_borders() -> Dict[str, Any]:
    border = {"style": "SOLID", "width": 1, "color": rgb((0.6, 0.6, 0.6))}
    return {"top": border, "bottom": border, "left": border, "right": border}


def repeat_cell(
    sheet_id: int,
    row: int,
    columns: int,
    *,
    background: Optional[Color] = None,
    bold: bool = False,
    font_size: Optional[int] = None,
    foreground: Optional[Color] = None,
    align: Optional[str] = None,
    borders: bool = False,
    rows: int = 1,
) -> Dict[str, Any]:
    fmt: Dict[str, Any] = {}
    fields: List[str] = []
    if background is not None:
        fmt["backgroundColor"] = rgb(background)
        fields.append("userEnteredFormat.backgroundColor")
    text: Dict[str, Any] = {}
    if bold:
        text["bold"] = True
    if font_size is not None:
        text["fontSize"] = font_size
    if foreground is not None:
        text["foregroundColor"] = rgb(foreground)
    if text:
        fmt["textFormat"] = text
        fields.append("userEnteredFormat.textFormat")
    if align is not None:
        fmt["horizontalAlignment"] = align
        fields.append("userEnteredFormat.horizontalAlignment")
    if borders:
        fmt["borders"] = _solid_borders()
        fields.append("userEnteredFormat.borders")
    return {
        "repeatCell": {
            "range": grid_range(sheet_id, row, row + rows, 0, max(1, columns)),
            "cell": {"userEnteredFormat": fmt},
            "fields": ",".join(fields),
        }
    }


def title_row(sheet_id: int, columns: int, color: Color, *, row: int = 0) -> List[Dict[str, Any]]:
    """Merge the title row across ``columns`` and paint it ``color``."""

    return [
        {
            "mergeCells": {
                "range": grid_range(sheet_id, row, row + 1, 0, max(1, columns)),
                "mergeType": "MERGE_ALL",
            }
        },
        repeat_cell(
            sheet_id,
            row,
            columns,
            background=color,
            bold=True,
            font_size=14,
            foreground=WHITE,
            align="CENTER",
        ),
    ]


def header_row(sheet_id: int, row: int, columns: int) -> Dict[str, Any]:
    return repeat_cell(sheet_id, row, columns, background=HEADER_COLOR, bold=True, align="CENTER", borders=True)


def section_row(sheet_id: int, row: int, columns: int) -> Dict[str, Any]:
    return repeat_cell(sheet_id, row, columns, background=SECTION_COLOR, bold=True)


def total_row(sheet_id: int, row: int, columns: int) -> Dict[str, Any]:
    return repeat_cell(sheet_id, row, columns, background=TOTAL_COLOR, bold=True, borders=True)


def bordered_rows(sheet_id: int, first_row: int, count: int, columns: int) -> Optional[Dict[str, Any]]:
    if count <= 0:
        return None
    return repeat_cell(sheet_id, first_row, columns, borders=True, rows=count)


def status_rules(sheet_id: int, first_row: int, column: int) -> List[Dict[str, Any]]:
    """Conditional formats painting ``critical`` red and ``normal`` green."""

    rules = []
    for index, (value, color) in enumerate((("critical", CRITICAL_COLOR), ("normal", NORMAL_COLOR))):
        rules.append(
            {
                "addConditionalFormatRule": {
                    "rule": {
                        "ranges": [grid_range(sheet_id, first_row, None, column, column + 1)],
                        "booleanRule": {
                            "condition": {"type": "TEXT_EQ", "values": [{"userEnteredValue": value}]},
                            "format": {"backgroundColor": rgb(color)},
                        },
                    },
                    "index": index,
                }
            }
        )
    return rules


def month_dropdown(sheet_id: int, row: int, column: int = 1) -> Dict[str, Any]:
    return {
        "setDataValidation": {
            "range": grid_range(sheet_id, row, row + 1, column, column + 1),
            "rule": {
                "condition": {
                    "type": "ONE_OF_LIST",
                    "values": [{"userEnteredValue": option} for option in MONTH_OPTIONS],
                },
                "showCustomUi": True,
                "strict": True,
            },
        }
    }


def basic_filter(sheet_id: int, header_row_index: int, columns: int, end_row: Optional[int] = None) -> Dict[str, Any]:
    return {
        "setBasicFilter": {
            "filter": {"range": grid_range(sheet_id, header_row_index, end_row, 0, max(1, columns))}
        }
    }


def auto_resize(sheet_id: int, columns: int) -> Dict[str, Any]:
    return {
        "autoResizeDimensions": {
            "dimensions": {
                "sheetId": sheet_id,
                "dimension": "COLUMNS",
                "startIndex": 0,
                "endIndex": max(1, columns),
            }
        }
    }


def _compact(requests: Sequence[Optional[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [request for request in requests if request]


def yearly_dashboard_requests(
    sheet_id: int,
    columns: int,
    *,
    section_row_index: int,
    header_row_index: int,
    data_rows: int,
    total_row_index: int,
) -> List[Dict[str, Any]]:
    return _compact(
        [
            *title_row(sheet_id, columns, YEARLY_TITLE_COLOR),
            section_row(sheet_id, section_row_index, columns),
            header_row(sheet_id, header_row_index, columns),
            bordered_rows(sheet_id, header_row_index + 1, data_rows, columns),
            section_row(sheet_id, total_row_index - 1, columns),
            total_row(sheet_id, total_row_index, columns),
            auto_resize(sheet_id, columns),
        ]
    )


def monthly_dashboard_requests(
    sheet_id: int,
    columns: int,
    *,
    filter_row_index: int,
    section_row_index: int,
    header_row_index: int,
    data_rows: int,
    total_row_index: int,
) -> List[Dict[str, Any]]:
    return _compact(
        [
            *title_row(sheet_id, columns, MONTHLY_TITLE_COLOR),
            month_dropdown(sheet_id, filter_row_index),
            section_row(sheet_id, section_row_index, columns),
            header_row(sheet_id, header_row_index, columns),
            bordered_rows(sheet_id, header_row_index + 1, data_rows, columns),
            section_row(sheet_id, total_row_index - 1, columns),
            total_row(sheet_id, total_row_index, columns),
            auto_resize(sheet_id, columns),
        ]
    )


def process_sheet_requests(
    sheet_id: int,
    columns: int,
    *,
    filter_row_index: int,
    section_row_index: int,
    header_row_index: int,
    data_rows: int,
    status_column: Optional[int],
) -> List[Dict[str, Any]]:
    first_data = header_row_index + 1
    return _compact(
        [
            *title_row(sheet_id, columns, PROCESS_TITLE_COLOR),
            month_dropdown(sheet_id, filter_row_index),
            section_row(sheet_id, section_row_index, columns),
            header_row(sheet_id, header_row_index, columns),
            bordered_rows(sheet_id, first_data, data_rows, columns),
            *(status_rules(sheet_id, first_data, status_column) if status_column is not None else []),
            basic_filter(sheet_id, header_row_index, columns, first_data + data_rows),
            auto_resize(sheet_id, columns),
        ]
    )


def document_sheet_requests(sheet_id: int, columns: int, data_rows: int) -> List[Dict[str, Any]]:
    """Formatting for a plain ``header + rows`` document export."""

    return _compact(
        [
            header_row(sheet_id, 0, columns),
            bordered_rows(sheet_id, 1, data_rows, columns),
            basic_filter(sheet_id, 0, columns, 1 + data_rows),
            auto_resize(sheet_id, columns),
        ]
    )


__all__ = [
    "MONTH_OPTIONS",
    "auto_resize",
    "basic_filter",
    "document_sheet_requests",
    "grid_range",
    "header_row",
    "month_dropdown",
    "monthly_dashboard_requests",
    "process_sheet_requests",
    "repeat_cell",
    "status_rules",
    "title_row",
    "yearly_dashboard_requests",
]
