"""Error taxonomy shared by the backup engine.

Every error carries a stable ``kind`` string and an operator-facing ``hint``
so callers can render a remediation message without inspecting types.
Configuration and authentication errors end a run early; sheet errors are
scoped to a single document type.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence


class BackupError(Exception):
    """Base error raised by the backup engine."""

    kind = "BackupError"
    hint = ""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind,
            "message": str(self),
            "hint": self.hint,
        }
        payload.update(self.details())
        return payload


class ConfigurationMissing(BackupError):
    kind = "ConfigurationMissing"
    hint = "Save the spreadsheet id and service account JSON before running a backup."


class InvalidCredential(BackupError):
    kind = "InvalidCredential"
    hint = "Re-enter the service account credentials; required fields are missing or empty."


class MalformedKey(BackupError):
    kind = "MalformedKey"
    hint = "Re-download the service account JSON; the private key PEM markers are missing."


class KeyDecodeError(BackupError):
    kind = "KeyDecodeError"
    hint = "Re-check the private key format; its base64 body could not be decoded."

    def __init__(
        self,
        message: str,
        *,
        cleaned_length: int = 0,
        prefix: str = "",
        suffix: str = "",
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.cleaned_length = cleaned_length
        self.prefix = prefix
        self.suffix = suffix

    def details(self) -> Dict[str, Any]:
        return {
            "cleaned_length": self.cleaned_length,
            "prefix": self.prefix,
            "suffix": self.suffix,
        }


class KeyImportError(BackupError):
    kind = "KeyImportError"
    hint = (
        "The key is probably truncated or not a PKCS#8 RSA key. Download a fresh JSON key "
        "for the service account."
    )


class TokenExchangeFailed(BackupError):
    kind = "TokenExchangeFailed"
    hint = "Check that the service account is enabled and the system clock is correct."

    def __init__(self, message: str, *, status: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def details(self) -> Dict[str, Any]:
        return {"status": self.status, "body": self.body}


class SheetsSyncError(BackupError):
    """Base class for errors scoped to a single spreadsheet target."""

    kind = "SheetsSyncError"


class SpreadsheetUnreachable(SheetsSyncError):
    kind = "SpreadsheetUnreachable"
    hint = "The spreadsheet could not be reached; check network access and retry."

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        spreadsheet_id: str = "",
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status = status
        self.spreadsheet_id = spreadsheet_id

    def details(self) -> Dict[str, Any]:
        return {"status": self.status, "spreadsheet_id": self.spreadsheet_id}


class SpreadsheetNotFound(SpreadsheetUnreachable):
    kind = "SpreadsheetNotFound"
    hint = "The spreadsheet was not found; verify the spreadsheet ID."


class SpreadsheetPermissionDenied(SpreadsheetUnreachable):
    kind = "SpreadsheetPermissionDenied"
    hint = "Share the spreadsheet with the service account email as an editor."


class WriteExhausted(SheetsSyncError):
    kind = "WriteExhausted"
    hint = "Every range format was rejected; check the sheet name and the attempt history."

    def __init__(self, message: str, *, attempts: Sequence[Mapping[str, Any]] = ()) -> None:
        super().__init__(message)
        self.attempts: List[Dict[str, Any]] = [dict(attempt) for attempt in attempts]

    def details(self) -> Dict[str, Any]:
        return {"attempts": self.attempts}


class UnknownDocumentType(BackupError):
    kind = "UnknownDocumentType"
    hint = "Use one of the registered document types."


class BackupInProgress(BackupError):
    kind = "BackupInProgress"
    hint = "Another backup run is still in progress; try again once it finishes."


class BackupCancelled(BackupError):
    kind = "BackupCancelled"
    hint = "The run was cancelled before this document type was written."


RUN_FATAL_ERRORS = (
    ConfigurationMissing,
    InvalidCredential,
    MalformedKey,
    KeyDecodeError,
    KeyImportError,
    TokenExchangeFailed,
)


__all__ = [
    "BackupCancelled",
    "BackupError",
    "BackupInProgress",
    "ConfigurationMissing",
    "InvalidCredential",
    "KeyDecodeError",
    "KeyImportError",
    "MalformedKey",
    "RUN_FATAL_ERRORS",
    "SheetsSyncError",
    "SpreadsheetNotFound",
    "SpreadsheetPermissionDenied",
    "SpreadsheetUnreachable",
    "TokenExchangeFailed",
    "UnknownDocumentType",
    "WriteExhausted",
]
