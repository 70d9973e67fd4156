"""Caller identity tokens — HS256 JWTs issued by the identity collaborator.

The metering service only verifies tokens. ``create_token`` exists for the
dev seed script and tests.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any

from src.core.logging import get_logger

log = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


class JWTManager:
    """Minimal HS256 JWT signer/verifier."""

    def __init__(self, secret: str, expiry_hours: int = 24) -> None:
        if not secret:
            msg = "JWT secret must not be empty"
            raise ValueError(msg)
        self._secret = secret.encode()
        self._expiry_seconds = expiry_hours * 3600

    def create_token(self, user_id: str, extra_claims: dict[str, Any] | None = None) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {"sub": user_id, "iat": now, "exp": now + self._expiry_seconds}
        if extra_claims:
            payload.update(extra_claims)

        header = _b64url_encode(json.dumps(_HEADER, separators=(",", ":")).encode())
        body = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode())
        return f"{header}.{body}.{self._sign(f'{header}.{body}')}"

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Return the payload of a valid, unexpired token, else None."""
        parts = token.split(".")
        if len(parts) != 3:
            return None

        header_b64, body_b64, sig = parts
        if not hmac.compare_digest(sig, self._sign(f"{header_b64}.{body_b64}")):
            log.warning("jwt_invalid_signature")
            return None

        try:
            header = json.loads(_b64url_decode(header_b64))
            payload = json.loads(_b64url_decode(body_b64))
        except ValueError:
            log.warning("jwt_decode_error")
            return None

        if not isinstance(header, dict) or header.get("alg") != "HS256":
            log.warning("jwt_unsupported_alg", alg=header.get("alg") if isinstance(header, dict) else None)
            return None
        if not isinstance(payload, dict) or not payload.get("sub"):
            log.warning("jwt_missing_subject")
            return None

        try:
            expires_at = int(payload.get("exp", 0))
        except (TypeError, ValueError):
            log.warning("jwt_invalid_exp", sub=payload.get("sub"))
            return None

        if int(time.time()) > expires_at:
            log.debug("jwt_expired", sub=payload.get("sub"))
            return None

        return payload

    def _sign(self, message: str) -> str:
        digest = hmac.new(self._secret, message.encode(), hashlib.sha256).digest()
        return _b64url_encode(digest)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
