"""Service account JWT signing and OAuth token exchange.

This is the only signing path in the package.  The assertion is built by
hand (header, claims, RS256 signature) and exchanged for a short-lived access
token using the JWT-bearer grant from RFC 7523.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from haccp_backup import private_key
from haccp_backup.errors import KeyImportError, TokenExchangeFailed
from haccp_backup.google_credentials import Credential

logger = logging.getLogger(__name__)

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600
DEFAULT_TIMEOUT = 30.0
_MAX_BODY_CHARS = 500


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: int

    def is_expired(self, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    def __repr__(self) -> str:
        return f"AccessToken(expires_at={self.expires_at})"


def b64url(data: bytes) -> str:
    """Return unpadded base64url text for ``data``."""

    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _encode_segment(payload: Mapping[str, Any]) -> str:
    return b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))


def import_key(der_bytes: bytes) -> rsa.RSAPrivateKey:
    """Load PKCS#8 DER bytes as an RSA signing key."""

    try:
        key = serialization.load_der_private_key(der_bytes, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyImportError(
            f"Private key could not be imported ({len(der_bytes)} bytes): {exc}"
        ) from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyImportError(
            f"Private key is {type(key).__name__}, expected an RSA key for RS256."
        )
    return key


def sign(key: rsa.RSAPrivateKey, signing_input: str) -> bytes:
    """Return the RS256 signature over the UTF-8 bytes of ``signing_input``."""

    return key.sign(signing_input.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())


class TokenSigner:
    """Build signed assertions and exchange them for access tokens."""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = DEFAULT_TIMEOUT,
        scope: str = SHEETS_SCOPE,
        strict_key_decoding: bool = False,
    ) -> None:
        self._session = session or requests.Session()
        self._clock = clock
        self._timeout = timeout
        self._scope = scope
        self._strict = strict_key_decoding

    def claims_for(self, credential: Credential, issued_at: int) -> dict:
        return {
            "iss": credential.client_email,
            "scope": self._scope,
            "aud": credential.token_uri or TOKEN_URI,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        }

    def build_assertion(self, credential: Credential, issued_at: Optional[int] = None) -> str:
        """Return the compact ``header.claims.signature`` JWT for ``credential``."""

        iat = int(self._clock()) if issued_at is None else issued_at
        key = import_key(private_key.decode(credential.private_key_pem, strict=self._strict))
        header = {"alg": "RS256", "typ": "JWT"}
        signing_input = f"{_encode_segment(header)}.{_encode_segment(self.claims_for(credential, iat))}"
        signature = sign(key, signing_input)
        return f"{signing_input}.{b64url(signature)}"

    def request_access_token(self, credential: Credential) -> AccessToken:
        """Exchange a freshly signed assertion for an access token."""

        issued_at = int(self._clock())
        assertion = self.build_assertion(credential, issued_at)
        token_uri = credential.token_uri or TOKEN_URI

        try:
            response = self._session.post(
                token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TokenExchangeFailed(f"Token request failed: {exc}", status=0, body=str(exc)) from exc

        if not 200 <= response.status_code < 300:
            body = (response.text or "").strip()[:_MAX_BODY_CHARS]
            logger.error("Token exchange rejected with HTTP %s", response.status_code)
            raise TokenExchangeFailed(
                f"Token endpoint returned HTTP {response.status_code}",
                status=response.status_code,
                body=body,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenExchangeFailed(
                "Token endpoint returned a non-JSON body",
                status=response.status_code,
                body=(response.text or "").strip()[:_MAX_BODY_CHARS],
            ) from exc

        value = payload.get("access_token") if isinstance(payload, Mapping) else None
        if not isinstance(value, str) or not value:
            raise TokenExchangeFailed(
                "Token endpoint response has no access_token",
                status=response.status_code,
                body=json.dumps(payload)[:_MAX_BODY_CHARS],
            )

        logger.info("Access token issued for %s", credential.client_email)
        return AccessToken(value=value, expires_at=issued_at + TOKEN_LIFETIME_SECONDS)


__all__ = [
    "AccessToken",
    "JWT_BEARER_GRANT",
    "SHEETS_SCOPE",
    "TOKEN_LIFETIME_SECONDS",
    "TOKEN_URI",
    "TokenSigner",
    "b64url",
    "import_key",
    "sign",
]
