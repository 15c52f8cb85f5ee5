"""Top-level backup procedure.

A run moves through ``LoadConfig -> LoadRecords -> Authenticate ->
EnsureSheets -> WriteSheet* -> LogResult``.  Configuration and authentication
failures end the run; sheet failures are recorded against the document type
they belong to and the run carries on with the next one.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import httplib2

import settings
from haccp_backup import dashboards, documents
from haccp_backup.backup_log import FAILED, PARTIAL, SUCCESS, BackupLogBook
from haccp_backup.errors import (
    RUN_FATAL_ERRORS,
    BackupCancelled,
    BackupError,
    BackupInProgress,
    ConfigurationMissing,
    SheetsSyncError,
    UnknownDocumentType,
)
from haccp_backup.google_credentials import parse_service_account_json
from haccp_backup.sheets_client import SheetSyncClient, build_sheets_service
from haccp_backup.token_signer import TokenSigner

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"

ServiceFactory = Callable[[str], Any]


TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error)


def error_payload(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, BackupError):
        return exc.to_dict()
    message = str(exc) or type(exc).__name__
    if isinstance(exc, TRANSPORT_ERRORS):
        return {
            "kind": "TransportError",
            "message": message,
            "hint": "The Google API could not be reached; check network access and retry.",
        }
    return {
        "kind": "UnexpectedError",
        "message": f"{type(exc).__name__}: {message}",
        "hint": "The backup stopped on an unexpected error; see the log file for details.",
    }


@dataclass
class BackupTarget:
    document_type: str
    spreadsheet_id: str = settings.DEFAULT_SPREADSHEET
    sheet_name: str = ""
    fields: Sequence[Any] = ()


@dataclass
class DocumentResult:
    document_type: str
    status: str
    record_count: int = 0
    spreadsheet_id: str = ""
    sheets: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "documentType": self.document_type,
            "status": self.status,
            "recordCount": self.record_count,
            "spreadsheetId": self.spreadsheet_id,
            "sheets": list(self.sheets),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class BackupResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data or {}}
        payload: Dict[str, Any] = {"success": False, "error": self.error or {}}
        if self.data is not None:
            payload["data"] = self.data
        return payload


def run_status(results: Sequence[DocumentResult]) -> str:
    succeeded = sum(1 for result in results if result.succeeded)
    if results and succeeded == len(results):
        return SUCCESS
    if succeeded:
        return PARTIAL
    return FAILED


class BackupOrchestrator:
    """Run backups of HACCP documents into Google Sheets, one run at a time."""

    def __init__(
        self,
        store,
        *,
        signer: Optional[TokenSigner] = None,
        service_factory: ServiceFactory = build_sheets_service,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
        sleep: Callable[[float], None] = time.sleep,
        log_book: Optional[BackupLogBook] = None,
    ) -> None:
        self._store = store
        self._signer = signer or TokenSigner()
        self._service_factory = service_factory
        self._clock = clock
        self._sleep = sleep
        self.log_book = log_book or BackupLogBook(store, clock=clock)
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def run_scheduled_backup(self) -> BackupResult:
        return self._run(self._structure_targets(), trigger="scheduled")

    def run_manual_backup(self) -> BackupResult:
        return self._run(self._structure_targets(), trigger="manual")

    def run_document_backup(
        self,
        document_type: str,
        spreadsheet_id: Optional[str] = None,
        sheet_name: Optional[str] = None,
    ) -> BackupResult:
        structure = settings.load_structure(self._store, document_type)
        target = BackupTarget(
            document_type=document_type,
            spreadsheet_id=spreadsheet_id or (structure.spreadsheet_id if structure else settings.DEFAULT_SPREADSHEET),
            sheet_name=sheet_name or (structure.sheet_name if structure else ""),
            fields=structure.fields if structure else (),
        )
        return self._run([target], trigger="document")

    def test_connection(self) -> BackupResult:
        """Authenticate and list the sheets of the default spreadsheet."""

        try:
            config = self._load_config()
            credential = parse_service_account_json(config.service_account_json)
            spreadsheet_id = settings.resolve_spreadsheet_id(None, config)
            token = self._signer.request_access_token(credential)
            client = SheetSyncClient(spreadsheet_id, self._service_factory(token.value), sleep=self._sleep)
            sheets = client.list_sheets()
        except (BackupError, *TRANSPORT_ERRORS) as exc:
            logger.warning("Connection test failed: %s", exc)
            return BackupResult(False, error=error_payload(exc))
        except Exception as exc:
            logger.exception("Connection test failed unexpectedly")
            return BackupResult(False, error=error_payload(exc))

        logger.info("Connection test succeeded for %s", spreadsheet_id)
        return BackupResult(
            True,
            data={
                "spreadsheetId": spreadsheet_id,
                "clientEmail": credential.client_email,
                "sheets": [sheet.title for sheet in sheets],
            },
        )

    def cancel(self) -> None:
        """Ask the in-flight run to stop before its next sheet write.

        A cancel that arrives while a trigger is still waiting to start also
        applies to that run; the flag is reset once the run has finished.
        """

        self._cancel.set()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def _structure_targets(self) -> List[BackupTarget]:
        structures = settings.enabled_structures(self._store)
        if not structures:
            logger.info("No enabled backup structures; falling back to a CCP backup")
            return [BackupTarget(documents.CCP_TYPE)]
        return [
            BackupTarget(
                document_type=structure.document_type,
                spreadsheet_id=structure.spreadsheet_id,
                sheet_name=structure.sheet_name,
                fields=structure.fields,
            )
            for structure in structures
        ]

    def _load_config(self) -> settings.BackupConfig:
        config = settings.load_backup_config(self._store)
        if config is None:
            raise ConfigurationMissing("Backup configuration has not been saved.")
        if not config.service_account_json.strip():
            raise ConfigurationMissing("Backup configuration has no service account JSON.")
        return config

    def _run(self, targets: List[BackupTarget], *, trigger: str) -> BackupResult:
        if not self._lock.acquire(blocking=False):
            logger.warning("Backup trigger %s rejected: a run is already in progress", trigger)
            return BackupResult(False, error=BackupInProgress("A backup run is already in progress.").to_dict())
        try:
            return self._execute(targets, trigger)
        finally:
            self._cancel.clear()
            self._lock.release()

    def _execute(self, targets: List[BackupTarget], trigger: str) -> BackupResult:
        label = ",".join(target.document_type for target in targets)
        entry = self.log_book.open(label, trigger=trigger)
        logger.info("Backup run %s started (%s: %s)", entry.id, trigger, label)
        try:
            return self._perform(entry, targets)
        except Exception as exc:
            logger.exception("Backup run %s stopped on an unexpected error", entry.id)
            return self._abort(entry, exc)

    def _perform(self, entry, targets: List[BackupTarget]) -> BackupResult:
        try:
            config = self._load_config()
            credential = parse_service_account_json(config.service_account_json)
            spreadsheet_ids = [settings.resolve_spreadsheet_id(target.spreadsheet_id, config) for target in targets]
        except RUN_FATAL_ERRORS as exc:
            return self._abort(entry, exc)

        records: List[Optional[List[Dict[str, Any]]]] = []
        for target in targets:
            try:
                records.append(documents.load_records(self._store, target.document_type))
            except UnknownDocumentType:
                records.append(None)
        total = sum(len(batch) for batch in records if batch)

        if total == 0 and all(batch is not None for batch in records):
            results = [
                DocumentResult(target.document_type, SUCCESS, 0, spreadsheet_id)
                for target, spreadsheet_id in zip(targets, spreadsheet_ids)
            ]
            logger.info("Backup run %s: nothing to back up", entry.id)
            return self._complete(entry, results, total)

        try:
            token = self._signer.request_access_token(credential) if total else None
        except RUN_FATAL_ERRORS as exc:
            return self._abort(entry, exc, record_count=total)

        clients: Dict[str, SheetSyncClient] = {}
        results: List[DocumentResult] = []
        for target, spreadsheet_id, batch in zip(targets, spreadsheet_ids, records):
            if self._cancel.is_set():
                results.append(self._cancelled(target, spreadsheet_id, batch))
                continue
            results.append(self._backup_target(target, spreadsheet_id, batch, token, clients))
        return self._complete(entry, results, total)

    def _backup_target(
        self,
        target: BackupTarget,
        spreadsheet_id: str,
        batch: Optional[List[Dict[str, Any]]],
        token,
        clients: Dict[str, SheetSyncClient],
    ) -> DocumentResult:
        result = DocumentResult(target.document_type, SUCCESS, len(batch or ()), spreadsheet_id)
        if batch is None:
            exc = UnknownDocumentType(f"Unsupported document type: {target.document_type!r}")
            result.status, result.error = FAILED, exc.to_dict()
            logger.error("Backup of %s skipped: unknown document type", target.document_type)
            return result
        if not batch:
            logger.info("No %s records to back up", target.document_type)
            return result

        try:
            client = clients.get(spreadsheet_id)
            if client is None:
                client = SheetSyncClient(spreadsheet_id, self._service_factory(token.value), sleep=self._sleep)
                clients[spreadsheet_id] = client

            now = self._clock()
            doc = documents.get_document_type(target.document_type)
            if doc.naming is documents.SheetNaming.BY_PROCESS:
                layouts = dashboards.ccp_layouts(batch, now, target.fields)
            else:
                sheet_name = target.sheet_name or documents.default_sheet_name(doc, now)
                layouts = [dashboards.document_sheet(doc, sheet_name, batch, target.fields)]

            sheet_ids = client.ensure_sheets(layout.sheet_name for layout in layouts)
            for layout in layouts:
                if self._cancel.is_set():
                    raise BackupCancelled(f"Cancelled before writing {layout.sheet_name!r}")
                client.clear_range(layout.sheet_name)
                outcome = client.write_values(layout.sheet_name, layout.values)
                sheet_id = sheet_ids.get(layout.sheet_name, client.sheet_id_for(layout.sheet_name))
                formatted = sheet_id is not None and client.apply_formatting(
                    sheet_id, layout.format_requests(sheet_id)
                )
                result.sheets.append(
                    {
                        "sheetName": layout.sheet_name,
                        "rows": layout.record_count,
                        "strategy": outcome.strategy,
                        "attempts": outcome.attempts,
                        "formatted": bool(formatted),
                    }
                )
        except BackupCancelled as exc:
            result.status, result.error = CANCELLED, exc.to_dict()
            logger.warning("Backup of %s cancelled", target.document_type)
        except (SheetsSyncError, *TRANSPORT_ERRORS) as exc:
            result.status, result.error = FAILED, error_payload(exc)
            logger.error("Backup of %s to %s failed: %s", target.document_type, spreadsheet_id, exc)
        else:
            logger.info(
                "Backed up %d %s records into %d sheet(s)",
                result.record_count,
                target.document_type,
                len(result.sheets),
            )
        return result

    def _cancelled(self, target: BackupTarget, spreadsheet_id: str, batch) -> DocumentResult:
        exc = BackupCancelled(f"Cancelled before backing up {target.document_type}")
        return DocumentResult(target.document_type, CANCELLED, len(batch or ()), spreadsheet_id, error=exc.to_dict())

    def _abort(self, entry, exc: Exception, *, record_count: int = 0) -> BackupResult:
        logger.error("Backup run %s aborted: %s", entry.id, exc)
        payload = error_payload(exc)
        self.log_book.finish(entry, FAILED, record_count=record_count, error=payload)
        return BackupResult(False, error=payload)

    def _complete(self, entry, results: List[DocumentResult], total: int) -> BackupResult:
        status = run_status(results)
        errors = [result.error for result in results if result.error is not None]
        finished = self.log_book.finish(
            entry,
            status,
            record_count=total,
            error=errors[0] if errors else None,
            results=[result.to_dict() for result in results],
        )
        data = {
            "status": status,
            "recordCount": total,
            "results": [result.to_dict() for result in results],
            "backupLogId": entry.id,
            "completedAt": finished.completed_at or finished.failed_at,
        }
        if status == SUCCESS:
            return BackupResult(True, data=data)
        error = {
            "kind": "BackupIncomplete" if status == PARTIAL else "BackupFailed",
            "message": f"{sum(1 for r in results if r.succeeded)} of {len(results)} document types backed up",
            "hint": errors[0].get("hint", "") if errors else "",
        }
        return BackupResult(False, data=data, error=error)


__all__ = [
    "BackupOrchestrator",
    "BackupResult",
    "BackupTarget",
    "CANCELLED",
    "DocumentResult",
    "error_payload",
    "run_status",
]
