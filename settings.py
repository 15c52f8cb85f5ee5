"""Backup engine configuration persisted in the key-value store."""
from __future__ import annotations

import datetime as dt
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from haccp_backup import documents
from haccp_backup.errors import ConfigurationMissing
from haccp_backup.google_credentials import validate_service_account_payload


logger = logging.getLogger(__name__)


BACKUP_CONFIG_KEY = "backup_config"
SCHEDULE_KEY = "backup_schedule_settings"
STRUCTURE_PREFIX = "backup_structure:"
DEFAULT_SPREADSHEET = "DEFAULT_SPREADSHEET"
SPREADSHEET_ENV_VAR = "GOOGLE_SHEETS_SPREADSHEET_ID"

DEFAULT_SCHEDULE_HOUR = 18
DEFAULT_SCHEDULE_MINUTE = 0


def _now_iso() -> str:
    return dt.datetime.now().isoformat(timespec="seconds")


@dataclass
class BackupConfig:
    spreadsheet_id: str = ""
    service_account_json: str = ""
    created_at: str = ""
    updated_at: str = ""

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "service_account_json": self.service_account_json,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def load_backup_config(store) -> Optional[BackupConfig]:
    data = store.get(BACKUP_CONFIG_KEY)
    if not isinstance(data, Mapping):
        return None
    return BackupConfig(
        spreadsheet_id=str(data.get("spreadsheet_id") or "").strip(),
        service_account_json=str(data.get("service_account_json") or ""),
        created_at=str(data.get("created_at") or ""),
        updated_at=str(data.get("updated_at") or ""),
    )


def save_backup_config(store, spreadsheet_id: str, service_account_json: str) -> BackupConfig:
    """Validate and store the backup configuration.

    The service account JSON must carry every field Google issues with a key;
    :class:`~haccp_backup.errors.InvalidCredential` is raised otherwise and
    nothing is written.
    """

    validate_service_account_payload(service_account_json)
    existing = load_backup_config(store)
    now = _now_iso()
    config = BackupConfig(
        spreadsheet_id=(spreadsheet_id or "").strip(),
        service_account_json=service_account_json,
        created_at=existing.created_at if existing and existing.created_at else now,
        updated_at=now,
    )
    store.set(BACKUP_CONFIG_KEY, config.to_json())
    logger.info("Backup configuration saved")
    return config


def update_spreadsheet_id(store, spreadsheet_id: str) -> BackupConfig:
    config = load_backup_config(store)
    if config is None:
        raise ConfigurationMissing("Backup configuration has not been saved.")
    config.spreadsheet_id = (spreadsheet_id or "").strip()
    config.updated_at = _now_iso()
    store.set(BACKUP_CONFIG_KEY, config.to_json())
    return config


def resolve_default_spreadsheet_id(config: Optional[BackupConfig]) -> str:
    """Configured spreadsheet id, falling back to ``GOOGLE_SHEETS_SPREADSHEET_ID``."""

    if config is not None and config.spreadsheet_id:
        return config.spreadsheet_id
    return os.getenv(SPREADSHEET_ENV_VAR, "").strip()


def resolve_spreadsheet_id(target: Optional[str], config: Optional[BackupConfig]) -> str:
    candidate = (target or "").strip()
    if candidate and candidate != DEFAULT_SPREADSHEET:
        return candidate
    default = resolve_default_spreadsheet_id(config)
    if not default:
        raise ConfigurationMissing(
            f"No default spreadsheet id configured; save one or set {SPREADSHEET_ENV_VAR}."
        )
    return default


@dataclass
class ScheduleSettings:
    hour: int = DEFAULT_SCHEDULE_HOUR
    minute: int = DEFAULT_SCHEDULE_MINUTE

    def __post_init__(self) -> None:
        if not 0 <= int(self.hour) <= 23:
            raise ValueError(f"Schedule hour must be between 0 and 23, got {self.hour}")
        if not 0 <= int(self.minute) <= 59:
            raise ValueError(f"Schedule minute must be between 0 and 59, got {self.minute}")
        self.hour = int(self.hour)
        self.minute = int(self.minute)

    def label(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def to_json(self) -> Dict[str, int]:
        return {"hour": self.hour, "minute": self.minute}


def parse_schedule(text: str) -> ScheduleSettings:
    """Parse ``HH:MM``; raises ``ValueError`` on malformed input."""

    hour_text, sep, minute_text = (text or "").strip().partition(":")
    if not sep:
        raise ValueError(f"Schedule must look like HH:MM, got {text!r}")
    return ScheduleSettings(hour=int(hour_text), minute=int(minute_text))


def load_schedule(store) -> ScheduleSettings:
    data = store.get(SCHEDULE_KEY)
    if not isinstance(data, Mapping):
        return ScheduleSettings()
    try:
        return ScheduleSettings(
            hour=int(data.get("hour", DEFAULT_SCHEDULE_HOUR)),
            minute=int(data.get("minute", DEFAULT_SCHEDULE_MINUTE)),
        )
    except (TypeError, ValueError):
        logger.warning("Stored backup schedule %r is invalid; using default", data)
        return ScheduleSettings()


def save_schedule(store, schedule: ScheduleSettings) -> None:
    payload = dict(schedule.to_json())
    payload["updated_at"] = _now_iso()
    store.set(SCHEDULE_KEY, payload)


@dataclass
class BackupField:
    name: str
    type: str = "text"
    required: bool = False
    order: int = 0

    def to_json(self) -> Dict[str, object]:
        return {"name": self.name, "type": self.type, "required": self.required, "order": self.order}


@dataclass
class BackupStructure:
    document_type: str
    spreadsheet_id: str = DEFAULT_SPREADSHEET
    sheet_name: str = ""
    enabled: bool = True
    fields: List[BackupField] = field(default_factory=list)

    def to_json(self) -> Dict[str, object]:
        return {
            "documentType": self.document_type,
            "spreadsheetId": self.spreadsheet_id,
            "sheetName": self.sheet_name,
            "enabled": self.enabled,
            "fields": [entry.to_json() for entry in self.fields],
        }


def _parse_fields(raw: object) -> List[BackupField]:
    entries: List[BackupField] = []
    if not isinstance(raw, list):
        return entries
    for position, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            continue
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        try:
            order = int(entry.get("order", position))
        except (TypeError, ValueError):
            order = position
        entries.append(
            BackupField(
                name=name.strip(),
                type=str(entry.get("type") or "text"),
                required=bool(entry.get("required", False)),
                order=order,
            )
        )
    return entries


def _parse_structure(data: Mapping[str, object]) -> Optional[BackupStructure]:
    document_type = data.get("documentType") or data.get("document_type")
    if not isinstance(document_type, str) or not document_type:
        return None
    spreadsheet_id = data.get("spreadsheetId") or data.get("spreadsheet_id") or DEFAULT_SPREADSHEET
    sheet_name = data.get("sheetName") or data.get("sheet_name") or ""
    return BackupStructure(
        document_type=document_type,
        spreadsheet_id=str(spreadsheet_id),
        sheet_name=str(sheet_name),
        enabled=bool(data.get("enabled", True)),
        fields=_parse_fields(data.get("fields")),
    )


def default_structure(document_type: str) -> BackupStructure:
    doc = documents.get_document_type(document_type)
    return BackupStructure(
        document_type=doc.identifier,
        fields=[
            BackupField(
                name=spec.header,
                type=spec.field_type.value,
                required=spec.required,
                order=position,
            )
            for position, spec in enumerate(doc.fields)
        ],
    )


def load_structure(store, document_type: str) -> Optional[BackupStructure]:
    data = store.get(f"{STRUCTURE_PREFIX}{document_type}")
    if not isinstance(data, Mapping):
        return None
    return _parse_structure(data)


def load_structures(store) -> List[BackupStructure]:
    structures = []
    for data in store.get_by_prefix(STRUCTURE_PREFIX):
        if not isinstance(data, Mapping):
            continue
        structure = _parse_structure(data)
        if structure is not None:
            structures.append(structure)
    order = list(documents.DOCUMENT_TYPES)
    structures.sort(
        key=lambda item: (order.index(item.document_type) if item.document_type in order else len(order), item.document_type)
    )
    return structures


def enabled_structures(store) -> List[BackupStructure]:
    return [structure for structure in load_structures(store) if structure.enabled]


def save_structure(store, structure: BackupStructure) -> None:
    documents.get_document_type(structure.document_type)
    store.set(f"{STRUCTURE_PREFIX}{structure.document_type}", structure.to_json())


def delete_structure(store, document_type: str) -> bool:
    key = f"{STRUCTURE_PREFIX}{document_type}"
    if store.get(key) is None:
        return False
    store.delete(key)
    return True
