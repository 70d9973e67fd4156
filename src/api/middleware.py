"""JWT authentication for FastAPI routes."""

from __future__ import annotations

from typing import Any

from fastapi import Cookie, Request

from config.settings import get_settings
from src.api.auth.tokens import JWTManager
from src.core.exceptions import AuthenticationError
from src.core.logging import get_logger

log = get_logger(__name__)

_jwt_manager: JWTManager | None = None


def _get_jwt() -> JWTManager:
    """Lazy-init singleton JWTManager."""
    global _jwt_manager  # noqa: PLW0603
    if _jwt_manager is None:
        settings = get_settings()
        _jwt_manager = JWTManager(
            secret=settings.metering_jwt_secret.get_secret_value(),
            expiry_hours=settings.metering_jwt_expiry_hours,
        )
    return _jwt_manager


def create_jwt(user_id: str, extra: dict[str, Any] | None = None) -> str:
    return _get_jwt().create_token(user_id, extra_claims=extra)


def verify_jwt(token: str) -> dict[str, Any] | None:
    return _get_jwt().verify_token(token)


async def get_current_user(
    request: Request,
    metering_token: str | None = Cookie(default=None),
) -> dict[str, Any]:
    """Extract and verify the JWT from the cookie or Authorization header.

    Returns the JWT payload with at least 'sub' (user_id).
    """
    token = metering_token
    if not token:
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        raise AuthenticationError("Not authenticated")

    payload = verify_jwt(token)
    if payload is None:
        log.info("authentication_failed", path=request.url.path)
        raise AuthenticationError("Invalid or expired token")

    return payload
