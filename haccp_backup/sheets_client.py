"""Google Sheets client used by the backup engine.

This module centralises every direct interaction with the Sheets v4 API.  The
rest of the engine hands it value matrices and formatting requests and gets
back plain results or subclasses of :class:`SheetsSyncError`.

Writes go through a fallback ladder of range formats.  Sheet titles with
spaces, quotes or non-ASCII characters are occasionally rejected with
"Unable to parse range"; each rung tries a different A1 spelling and the last
one bypasses A1 parsing entirely with an ``updateCells`` request addressed by
numeric sheet id.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, MutableSequence, Optional, Sequence

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from haccp_backup.errors import (
    SpreadsheetNotFound,
    SpreadsheetPermissionDenied,
    SpreadsheetUnreachable,
    WriteExhausted,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
CLEAR_RANGE = "A1:Z1000"
RETRIABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_RETRY_ATTEMPTS = 3
BACKOFF_SCHEDULE = (1, 2, 4)

WRITE_STRATEGIES: Sequence[str] = ("primary", "quoted", "full_column", "bare", "update_cells")

TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error)
# AuthorizedHttp answers a 401 by refreshing the bearer token, which a
# token-only credential cannot do.
AUTH_STATUS = 401
API_ERRORS = (HttpError, GoogleAuthError, *TRANSPORT_ERRORS)


@dataclass(frozen=True)
class SheetInfo:
    title: str
    sheet_id: int


@dataclass
class WriteOutcome:
    """Result of a successful :meth:`SheetSyncClient.write_values` call."""

    updated_rows: int
    updated_cells: int
    strategy: str
    attempts: List[Dict[str, Any]] = field(default_factory=list)


def build_sheets_service(access_token: str, *, timeout: int = DEFAULT_TIMEOUT):
    """Return a Sheets v4 service authorised with a bearer ``access_token``."""

    credentials = Credentials(token=access_token)
    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("sheets", "v4", http=http, cache_discovery=False)


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return 0
    resp = getattr(exc, "resp", None)
    if resp is not None:
        try:
            return int(getattr(resp, "status", 0))
        except (TypeError, ValueError):
            return 0
    return 0


def _error_status(exc: Exception) -> int:
    if isinstance(exc, HttpError):
        return _http_status(exc)
    if isinstance(exc, GoogleAuthError):
        return AUTH_STATUS
    return int(getattr(exc, "status", 0) or 0)


def _column_letter(index: int) -> str:
    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def _quote_title(title: str) -> str:
    escaped = (title or "").replace("'", "''")
    return f"'{escaped}'"


def ladder_ranges(title: str, rows: int, columns: int) -> List[tuple]:
    """Return ``(strategy, range)`` pairs for the A1 rungs of the write ladder."""

    last = _column_letter(max(1, columns))
    return [
        ("primary", f"{title}!A1"),
        ("quoted", f"{_quote_title(title)}!A1"),
        ("full_column", f"{_quote_title(title)}!A:{last}"),
        ("bare", f"A1:{last}{max(1, rows)}"),
    ]


def _cell_value(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"stringValue": ""}
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, (int, float)):
        return {"numberValue": value}
    return {"stringValue": str(value)}


def _plain_row(row: Iterable[Any]) -> List[Any]:
    return ["" if cell is None else cell for cell in row]


def _describe(exc: Exception) -> str:
    if isinstance(exc, HttpError):
        reason = getattr(exc, "reason", None) or getattr(exc, "error_details", None)
        if reason:
            return str(reason)
    return str(exc) or type(exc).__name__


class SheetSyncClient:
    """Typed wrapper around one spreadsheet of the Sheets v4 API."""

    def __init__(
        self,
        spreadsheet_id: str,
        service,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self._service = service
        self._sleep = sleep
        self._sheet_ids: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _execute(self, request, description: str):
        """Execute ``request`` applying backoff for retriable HTTP statuses."""

        attempt = 0
        while True:
            try:
                return request.execute()
            except HttpError as exc:
                status = _http_status(exc)
                if status not in RETRIABLE_STATUSES or attempt >= MAX_RETRY_ATTEMPTS - 1:
                    raise
                delay = BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE) - 1)]
                attempt += 1
                logger.warning(
                    "Sheets API %s error (%s). Retrying in %ss (%d/%d)",
                    description,
                    status,
                    delay,
                    attempt,
                    MAX_RETRY_ATTEMPTS,
                )
                self._sleep(delay)

    def _unreachable(self, exc: Exception) -> SpreadsheetUnreachable:
        status = _error_status(exc)
        if status == 404:
            return SpreadsheetNotFound(
                f"Spreadsheet {self.spreadsheet_id} was not found",
                status=status,
                spreadsheet_id=self.spreadsheet_id,
            )
        if status == 403:
            return SpreadsheetPermissionDenied(
                f"No permission to access spreadsheet {self.spreadsheet_id}",
                status=status,
                spreadsheet_id=self.spreadsheet_id,
            )
        if status == AUTH_STATUS:
            return SpreadsheetUnreachable(
                f"Access to spreadsheet {self.spreadsheet_id} was refused: {_describe(exc)}",
                status=status,
                spreadsheet_id=self.spreadsheet_id,
                hint="The access token was rejected; check the system clock and run the backup again.",
            )
        return SpreadsheetUnreachable(
            f"Spreadsheet {self.spreadsheet_id} is unreachable: {_describe(exc)}",
            status=status,
            spreadsheet_id=self.spreadsheet_id,
        )

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------
    def list_sheets(self) -> List[SheetInfo]:
        request = self._service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id,
            fields="sheets.properties",
        )
        try:
            metadata = self._execute(request, "spreadsheets.get")
        except API_ERRORS as exc:
            raise self._unreachable(exc) from exc

        sheets: List[SheetInfo] = []
        for sheet in (metadata or {}).get("sheets", []):
            properties = sheet.get("properties", {})
            title = properties.get("title")
            if title is None:
                continue
            info = SheetInfo(title=str(title), sheet_id=int(properties.get("sheetId", 0)))
            sheets.append(info)
            self._sheet_ids[info.title.casefold()] = info.sheet_id
        return sheets

    def ensure_sheets(self, titles: Iterable[str]) -> Dict[str, int]:
        """Create any missing sheets in one batch and return ``title -> sheet id``.

        Titles are matched without regard to case, as Sheets does: ``ovena``
        resolves to an existing ``OvenA`` instead of being added again.
        """

        wanted: Dict[str, str] = {}
        for title in titles:
            if title:
                wanted.setdefault(title.casefold(), title)
        if not wanted:
            return {}

        existing = {info.title.casefold(): info.sheet_id for info in self.list_sheets()}
        missing = [title for key, title in wanted.items() if key not in existing]
        if missing:
            requests = [{"addSheet": {"properties": {"title": title}}} for title in missing]
            request = self._service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"requests": requests},
            )
            try:
                response = self._execute(request, "spreadsheets.batchUpdate")
            except API_ERRORS as exc:
                raise self._unreachable(exc) from exc

            for reply in (response or {}).get("replies", []):
                properties = (reply or {}).get("addSheet", {}).get("properties", {})
                if "title" in properties and "sheetId" in properties:
                    key = str(properties["title"]).casefold()
                    existing[key] = int(properties["sheetId"])
                    self._sheet_ids[key] = existing[key]
            if any(title.casefold() not in existing for title in missing):
                existing = {info.title.casefold(): info.sheet_id for info in self.list_sheets()}
            logger.info("Created sheets %s in %s", ", ".join(missing), self.spreadsheet_id)

        return {title: existing[key] for key, title in wanted.items() if key in existing}

    def ensure_sheet(self, title: str) -> int:
        ids = self.ensure_sheets([title])
        if title not in ids:
            raise SpreadsheetUnreachable(
                f"Sheet {title!r} could not be created",
                spreadsheet_id=self.spreadsheet_id,
            )
        return ids[title]

    def sheet_id_for(self, title: str) -> Optional[int]:
        return self._sheet_ids.get(title.casefold())

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------
    def clear_range(self, title: str, range_spec: Optional[str] = None) -> bool:
        """Clear ``range_spec`` of ``title``; failures are logged, never raised."""

        target = f"{_quote_title(title)}!{range_spec or CLEAR_RANGE}"
        request = self._service.spreadsheets().values().clear(
            spreadsheetId=self.spreadsheet_id,
            range=target,
            body={},
        )
        try:
            self._execute(request, "values.clear")
        except API_ERRORS as exc:
            logger.warning("Clearing %s failed: %s", target, _describe(exc))
            return False
        return True

    def _update_values(self, range_spec: str, matrix: List[List[Any]]) -> Dict[str, Any]:
        request = self._service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id,
            range=range_spec,
            valueInputOption="USER_ENTERED",
            body={"values": matrix},
        )
        return self._execute(request, "values.update") or {}

    def _update_cells(self, sheet_id: int, matrix: List[List[Any]]) -> Dict[str, Any]:
        rows = [{"values": [{"userEnteredValue": _cell_value(cell)} for cell in row]} for row in matrix]
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={
                "requests": [
                    {
                        "updateCells": {
                            "start": {"sheetId": sheet_id, "rowIndex": 0, "columnIndex": 0},
                            "rows": rows,
                            "fields": "userEnteredValue",
                        }
                    }
                ]
            },
        )
        return self._execute(request, "spreadsheets.batchUpdate") or {}

    def write_values(self, title: str, matrix: Sequence[Sequence[Any]]) -> WriteOutcome:
        """Write ``matrix`` at the top-left of ``title`` using the fallback ladder."""

        values = [_plain_row(row) for row in matrix]
        if not values:
            return WriteOutcome(updated_rows=0, updated_cells=0, strategy="skipped")

        width = max(1, max(len(row) for row in values))
        expected_cells = sum(len(row) for row in values)
        attempts: List[Dict[str, Any]] = []

        for strategy, range_spec in ladder_ranges(title, len(values), width):
            try:
                response = self._update_values(range_spec, values)
            except GoogleAuthError as exc:
                # No other range spelling gets past a rejected token.
                raise self._unreachable(exc) from exc
            except (HttpError, *TRANSPORT_ERRORS) as exc:
                status = _error_status(exc)
                attempts.append(
                    {
                        "strategy": strategy,
                        "range": range_spec,
                        "success": False,
                        "status": status,
                        "error": _describe(exc),
                    }
                )
                logger.warning("Write to %s via %s failed (%s)", title, strategy, status or "transport")
                continue

            attempts.append({"strategy": strategy, "range": range_spec, "success": True})
            logger.info("Wrote %d rows to %s via %s", len(values), title, strategy)
            return WriteOutcome(
                updated_rows=int(response.get("updatedRows", len(values))),
                updated_cells=int(response.get("updatedCells", expected_cells)),
                strategy=strategy,
                attempts=attempts,
            )

        try:
            sheet_id = self.sheet_id_for(title)
            if sheet_id is None:
                sheet_id = self.ensure_sheet(title)
            self._update_cells(sheet_id, values)
        except GoogleAuthError as exc:
            raise self._unreachable(exc) from exc
        except (HttpError, SpreadsheetUnreachable, *TRANSPORT_ERRORS) as exc:
            status = _error_status(exc)
            attempts.append(
                {
                    "strategy": "update_cells",
                    "range": f"sheetId:{self.sheet_id_for(title)}",
                    "success": False,
                    "status": status,
                    "error": _describe(exc),
                }
            )
            logger.error("Every write strategy failed for %s", title)
            raise WriteExhausted(
                f"Could not write {len(values)} rows to sheet {title!r}",
                attempts=attempts,
            ) from exc

        attempts.append({"strategy": "update_cells", "range": f"sheetId:{sheet_id}", "success": True})
        logger.info("Wrote %d rows to %s via update_cells", len(values), title)
        return WriteOutcome(
            updated_rows=len(values),
            updated_cells=expected_cells,
            strategy="update_cells",
            attempts=attempts,
        )

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------
    def apply_formatting(self, sheet_id: Optional[int], requests: Sequence[Dict[str, Any]]) -> bool:
        """Send ``requests`` in one ``batchUpdate``; failures are logged, never raised."""

        if not requests:
            return True
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": list(requests)},
        )
        try:
            self._execute(request, "spreadsheets.batchUpdate")
        except API_ERRORS as exc:
            logger.warning("Formatting sheet %s failed: %s", sheet_id, _describe(exc))
            return False
        return True


__all__ = [
    "CLEAR_RANGE",
    "SheetInfo",
    "SheetSyncClient",
    "WRITE_STRATEGIES",
    "WriteOutcome",
    "build_sheets_service",
    "ladder_ranges",
]
