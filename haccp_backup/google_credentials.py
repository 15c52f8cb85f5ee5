"""Helpers for validating and normalising Google service account credentials."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping

from haccp_backup.errors import InvalidCredential

__all__ = [
    "Credential",
    "DEFAULT_TOKEN_URI",
    "REQUIRED_FIELDS",
    "SAVE_REQUIRED_FIELDS",
    "parse_service_account_json",
    "validate_service_account_payload",
]

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Fields needed to sign a token request.
REQUIRED_FIELDS: Iterable[str] = ("private_key", "client_email")

# Fields checked when an operator saves the configuration.
SAVE_REQUIRED_FIELDS: Iterable[str] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
)


@dataclass(frozen=True)
class Credential:
    """Service account identity used for a single backup run."""

    client_email: str
    project_id: str
    private_key_pem: str
    private_key_id: str = ""
    token_uri: str = DEFAULT_TOKEN_URI

    def __repr__(self) -> str:
        return f"Credential(client_email={self.client_email!r}, project_id={self.project_id!r})"


def _load_json(raw: str) -> Mapping[str, object]:
    payload_text = (raw or "").lstrip("\ufeff").strip()
    if not payload_text:
        raise InvalidCredential("Service account JSON is empty.")

    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        raise InvalidCredential(f"Service account JSON parse error: {exc.msg}") from exc

    if not isinstance(payload, Mapping):
        raise InvalidCredential("Service account JSON must be an object.")
    return payload


def _missing_fields(payload: Mapping[str, object], fields: Iterable[str]) -> list[str]:
    missing: list[str] = []
    for field in fields:
        value = payload.get(field)
        if not isinstance(value, str) or not value.strip():
            missing.append(field)
    return missing


def validate_service_account_payload(raw: str) -> Dict[str, object]:
    """Return the decoded JSON after checking every field the UI requires."""

    data: Dict[str, object] = dict(_load_json(raw))
    missing = _missing_fields(data, SAVE_REQUIRED_FIELDS)
    if data.get("type") not in (None, "service_account") and "type" not in missing:
        missing.append("type")
    if missing:
        ordered = ", ".join(sorted(dict.fromkeys(missing)))
        raise InvalidCredential(f"Service account JSON missing fields: {ordered}")
    return data


def parse_service_account_json(raw: str) -> Credential:
    """Build a :class:`Credential` from the stored ``service_account_json`` text."""

    data = _load_json(raw)
    missing = _missing_fields(data, REQUIRED_FIELDS)
    if missing:
        ordered = ", ".join(sorted(missing))
        raise InvalidCredential(f"Service account JSON missing fields: {ordered}")

    token_uri = data.get("token_uri")
    return Credential(
        client_email=str(data["client_email"]).strip(),
        project_id=str(data.get("project_id") or ""),
        private_key_pem=str(data["private_key"]),
        private_key_id=str(data.get("private_key_id") or ""),
        token_uri=token_uri.strip() if isinstance(token_uri, str) and token_uri.strip() else DEFAULT_TOKEN_URI,
    )
