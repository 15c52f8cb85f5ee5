"""Document type registry and record-to-row conversion.

Each HACCP document type is described once by a :class:`DocumentType` entry:
its key prefix in the store, its display name, the ordered columns exported to
Sheets and how its sheets are named.  Conversion is driven entirely by the
registry so a record with missing or odd attributes renders as empty cells
instead of aborting the export.
"""

from __future__ import annotations

import calendar
import datetime as dt
import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from haccp_backup.errors import UnknownDocumentType

logger = logging.getLogger(__name__)

OTHER_PROCESS = "기타공정"
CCP_TYPE = "ccp"

_TIMESTAMP_RE = re.compile(
    r"^\s*(?P<date>(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2}))"
    r"(?:[T ](?P<time>\d{2}:\d{2}(?::\d{2})?))?"
)


class FieldType(enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    TIME = "time"
    INDEX = "index"
    MONTH = "month"
    DAY = "day"
    STATUS = "status"
    REMARK = "remark"
    COUNT = "count"


class SheetNaming(enum.Enum):
    FIXED = "fixed"
    BY_PROCESS = "by_process"


@dataclass(frozen=True)
class FieldSpec:
    """One exported column.

    ``key`` is a dotted attribute path into the record.  For ``DATE`` and
    ``TIME`` it names the ISO timestamp to split; for ``MONTH``/``DAY`` it
    names the timestamp the calendar part is taken from.
    """

    header: str
    key: str = ""
    field_type: FieldType = FieldType.TEXT
    required: bool = False


@dataclass(frozen=True)
class DocumentType:
    identifier: str
    prefix: str
    display_name: str
    fields: Tuple[FieldSpec, ...]
    naming: SheetNaming = SheetNaming.FIXED

    @property
    def headers(self) -> List[str]:
        return [spec.header for spec in self.fields]


def _columns(*specs: Tuple[str, str, FieldType]) -> Tuple[FieldSpec, ...]:
    base_head = (FieldSpec("ID", "id", FieldType.TEXT, True),)
    base_tail = (
        FieldSpec("생성일", "createdAt", FieldType.DATE),
        FieldSpec("수정일", "updatedAt", FieldType.DATE),
    )
    body = tuple(FieldSpec(header, key, field_type) for header, key, field_type in specs)
    return base_head + body + base_tail


_T, _N = FieldType.TEXT, FieldType.NUMBER

CCP_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("생성일", "createdAt", FieldType.DATE),
    FieldSpec("생성시각", "createdAt", FieldType.TIME),
    FieldSpec("번호", "", FieldType.INDEX),
    FieldSpec("ID", "id", FieldType.TEXT, True),
    FieldSpec("이름", "name"),
    FieldSpec("공정", "process"),
    FieldSpec("위험요소", "hazard"),
    FieldSpec("한계기준(최소)", "criticalLimit.min", FieldType.NUMBER),
    FieldSpec("한계기준(최대)", "criticalLimit.max", FieldType.NUMBER),
    FieldSpec("단위", "unit"),
    FieldSpec("현재값", "currentValue", FieldType.NUMBER),
    FieldSpec("상태", "status", FieldType.STATUS),
    FieldSpec("최종점검", "lastChecked"),
    FieldSpec("월", "createdAt", FieldType.MONTH),
    FieldSpec("일", "createdAt", FieldType.DAY),
    FieldSpec("비고", "status", FieldType.REMARK),
)

DOCUMENT_TYPES: Dict[str, DocumentType] = {
    doc.identifier: doc
    for doc in (
        DocumentType("ccp", "ccp:", "CCP 관리", CCP_FIELDS, SheetNaming.BY_PROCESS),
        DocumentType(
            "production-log",
            "production_daily_log:",
            "생산일지",
            _columns(("날짜", "date", _T), ("제품명", "productName", _T), ("생산량", "quantity", _N),
                     ("담당자", "operator", _T), ("비고", "notes", _T)),
        ),
        DocumentType(
            "temperature-log",
            "refrigerator_temperature_log:",
            "냉장냉동고 온도기록",
            _columns(("날짜", "date", _T), ("냉장고명", "refrigeratorName", _T), ("온도(°C)", "temperature", _N),
                     ("상태", "status", _T), ("점검자", "inspector", _T), ("비고", "notes", _T)),
        ),
        DocumentType(
            "cleaning-log",
            "cleaning_disinfection_log:",
            "세척소독 기록",
            _columns(("날짜", "date", _T), ("청소구역", "area", _T), ("사용제품", "cleaningProduct", _T),
                     ("담당자", "operator", _T), ("상태", "status", _T), ("비고", "notes", _T)),
        ),
        DocumentType(
            "receiving-log",
            "material_receiving_log:",
            "원료입고 검수기록",
            _columns(("날짜", "date", _T), ("원료명", "materialName", _T), ("공급업체", "supplier", _T),
                     ("수량", "quantity", _N), ("상태", "status", _T), ("검수자", "inspector", _T),
                     ("비고", "notes", _T)),
        ),
        DocumentType(
            "pest-control",
            "pest_control_weekly:",
            "방충방서 주간점검",
            _columns(("주차", "week", _T), ("점검일", "date", _T), ("구역", "area", _T), ("상태", "status", _T),
                     ("발견사항", "findings", _T), ("조치사항", "actions", _T), ("점검자", "inspector", _T)),
        ),
        DocumentType(
            "facility-inspection",
            "facility_weekly_inspection:",
            "시설 주간점검",
            _columns(("주차", "week", _T), ("점검일", "date", _T), ("시설명", "facilityName", _T),
                     ("상태", "status", _T), ("이상사항", "issues", _T), ("조치사항", "actions", _T),
                     ("점검자", "inspector", _T)),
        ),
        DocumentType(
            "visitor-log",
            "visitor_management:",
            "방문자 관리대장",
            _columns(("날짜", "date", _T), ("방문자명", "visitorName", _T), ("소속", "organization", _T),
                     ("방문목적", "purpose", _T), ("입실시간", "entryTime", _T), ("퇴실시간", "exitTime", _T),
                     ("담당자", "host", _T)),
        ),
        DocumentType(
            "accident-report",
            "accident_report:",
            "사고 보고서",
            _columns(("발생일시", "incidentDateTime", _T), ("사고유형", "type", _T), ("장소", "location", _T),
                     ("내용", "description", _T), ("조치사항", "actions", _T), ("보고자", "reporter", _T),
                     ("상태", "status", _T)),
        ),
        DocumentType(
            "training-record",
            "training_record:",
            "교육훈련 기록",
            _columns(("날짜", "date", _T), ("교육명", "trainingName", _T), ("교육자", "instructor", _T),
                     ("참석자", "attendees", _T), ("시간", "duration", _T), ("내용", "content", _T),
                     ("평가", "evaluation", _T)),
        ),
    )
}


def get_document_type(identifier: str) -> DocumentType:
    try:
        return DOCUMENT_TYPES[identifier]
    except KeyError:
        raise UnknownDocumentType(f"Unsupported document type: {identifier!r}") from None


def _resolve(document_type) -> DocumentType:
    if isinstance(document_type, DocumentType):
        return document_type
    return get_document_type(str(document_type))


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------
def extract(record: Any, path: str) -> Any:
    """Follow the dotted ``path`` into ``record``; ``None`` when any step is missing."""

    current = record
    for part in path.split(".") if path else ():
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
        if current is None:
            return None
    return current


def render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def split_timestamp(value: Any) -> Tuple[str, str]:
    """Split an ISO timestamp into ``(date, time)`` text without timezone conversion."""

    if not isinstance(value, str):
        return "", ""
    match = _TIMESTAMP_RE.match(value)
    if not match:
        return "", ""
    return match.group("date"), match.group("time") or ""


def record_date(record: Any, key: str = "createdAt") -> Optional[dt.date]:
    """Return the calendar date of ``record[key]`` or ``None`` when absent or unparsable."""

    value = extract(record, key)
    if not isinstance(value, str):
        return None
    match = _TIMESTAMP_RE.match(value)
    if not match:
        return None
    try:
        return dt.date(int(match.group("year")), int(match.group("month")), int(match.group("day")))
    except ValueError:
        return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def ccp_status(record: Any) -> str:
    """Explicit ``status`` when set, otherwise derived from the critical limits."""

    status = extract(record, "status")
    if isinstance(status, str) and status.strip():
        return status.strip()

    current = _as_float(extract(record, "currentValue"))
    low = _as_float(extract(record, "criticalLimit.min"))
    high = _as_float(extract(record, "criticalLimit.max"))
    if current is not None:
        if (low is not None and current < low) or (high is not None and current > high):
            return "critical"
    return "normal"


def remark_for(status: str) -> str:
    return {
        "critical": "⚠️ 위험상태",
        "warning": "⚡ 주의상태",
        "normal": "✅ 정상",
    }.get(status, "")


def render_field(spec: FieldSpec, record: Any, index: int) -> str:
    field_type = spec.field_type
    if field_type is FieldType.INDEX:
        return str(index)
    if field_type is FieldType.DATE:
        return split_timestamp(extract(record, spec.key))[0]
    if field_type is FieldType.TIME:
        return split_timestamp(extract(record, spec.key))[1]
    if field_type in (FieldType.MONTH, FieldType.DAY):
        day = record_date(record, spec.key)
        if day is None:
            return ""
        return f"{day.month}월" if field_type is FieldType.MONTH else f"{day.day}일"
    if field_type is FieldType.STATUS:
        return ccp_status(record)
    if field_type is FieldType.REMARK:
        return remark_for(ccp_status(record))
    value = extract(record, spec.key)
    if field_type is FieldType.COUNT:
        return str(len(value)) if isinstance(value, (list, tuple)) else "0"
    return render_value(value)


# ---------------------------------------------------------------------------
# Headers and rows
# ---------------------------------------------------------------------------
def _field_name(entry: Any) -> str:
    if isinstance(entry, Mapping):
        return str(entry.get("name") or "")
    return str(getattr(entry, "name", "") or "")


def _field_order(entry: Any, position: int) -> int:
    raw = entry.get("order") if isinstance(entry, Mapping) else getattr(entry, "order", None)
    try:
        return int(raw)
    except (TypeError, ValueError):
        return position


def select_fields(document_type, fields: Optional[Iterable[Any]] = None) -> List[FieldSpec]:
    """Return the columns to export.

    ``fields`` are backup structure field entries (``{name, order, ...}``).  The
    ones naming a registry header select and order the columns; when none
    match, the full registry list is used.
    """

    doc = _resolve(document_type)
    if not fields:
        return list(doc.fields)

    by_header = {spec.header: spec for spec in doc.fields}
    chosen = []
    for position, entry in enumerate(fields):
        spec = by_header.get(_field_name(entry))
        if spec is not None:
            chosen.append((_field_order(entry, position), position, spec))
    if not chosen:
        logger.debug("No structure fields match %s headers; using all columns", doc.identifier)
        return list(doc.fields)
    chosen.sort(key=lambda item: (item[0], item[1]))
    return [spec for _, _, spec in chosen]


def header_for(document_type, fields: Optional[Iterable[Any]] = None) -> List[str]:
    return [spec.header for spec in select_fields(document_type, fields)]


def rows_for(document_type, records: Iterable[Any], fields: Optional[Iterable[Any]] = None) -> Iterator[List[str]]:
    """Yield one row per record with exactly ``len(header_for(...))`` cells."""

    specs = select_fields(document_type, fields)
    for index, record in enumerate(records, start=1):
        yield [render_field(spec, record, index) for spec in specs]


def default_sheet_name(document_type, now: dt.datetime) -> str:
    doc = _resolve(document_type)
    return f"{doc.identifier}_{now:%Y_%m_%d}"


# ---------------------------------------------------------------------------
# Loading and grouping
# ---------------------------------------------------------------------------
def load_records(store, document_type) -> List[Dict[str, Any]]:
    """Read every record of ``document_type`` from ``store``; non-object values are skipped."""

    doc = _resolve(document_type)
    raw = store.get_by_prefix(doc.prefix) or []
    records = [item for item in raw if isinstance(item, Mapping)]
    skipped = len(raw) - len(records)
    if skipped:
        logger.warning("Skipped %d non-object %s records", skipped, doc.identifier)
    return records


def process_name(record: Any) -> str:
    for key in ("process", "name", "ccpType"):
        value = extract(record, key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if value not in (None, "") and not isinstance(value, str):
            return render_value(value)
    return OTHER_PROCESS


def group_for_ccp(records: Iterable[Any]) -> Dict[str, List[Any]]:
    """Group CCP records by process name; every record lands in exactly one group.

    Sheet titles are unique regardless of case, so ``OvenA`` and ``ovena``
    share a group keyed by the first spelling seen.
    """

    groups: Dict[str, List[Any]] = {}
    spellings: Dict[str, str] = {}
    for record in records:
        name = process_name(record)
        key = spellings.setdefault(name.casefold(), name)
        groups.setdefault(key, []).append(record)
    return groups


def newest_first(records: Sequence[Any]) -> List[Any]:
    """Sort by ``createdAt`` descending; records without one go last."""

    def sort_key(record: Any) -> Tuple[int, str, str]:
        date, time = split_timestamp(extract(record, "createdAt"))
        return (1 if date else 0, date, time)

    return sorted(records, key=sort_key, reverse=True)


def bucket_by_month(records: Iterable[Any], year: int) -> Dict[int, List[Any]]:
    buckets: Dict[int, List[Any]] = {month: [] for month in range(1, 13)}
    for record in records:
        day = record_date(record)
        if day is not None and day.year == year:
            buckets[day.month].append(record)
    return buckets


def bucket_by_day(records: Iterable[Any], year: int, month: int) -> Dict[int, List[Any]]:
    days = calendar.monthrange(year, month)[1]
    buckets: Dict[int, List[Any]] = {day: [] for day in range(1, days + 1)}
    for record in records:
        day = record_date(record)
        if day is not None and day.year == year and day.month == month:
            buckets[day.day].append(record)
    return buckets


__all__ = [
    "CCP_TYPE",
    "DOCUMENT_TYPES",
    "DocumentType",
    "FieldSpec",
    "FieldType",
    "OTHER_PROCESS",
    "SheetNaming",
    "bucket_by_day",
    "bucket_by_month",
    "ccp_status",
    "default_sheet_name",
    "extract",
    "get_document_type",
    "group_for_ccp",
    "header_for",
    "load_records",
    "newest_first",
    "process_name",
    "record_date",
    "remark_for",
    "rows_for",
    "select_fields",
    "split_timestamp",
]
