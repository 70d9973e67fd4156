"""Tests for JWT middleware — token verification and caller extraction."""

from __future__ import annotations

import time
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from src.api.auth.tokens import JWTManager
from src.api.middleware import create_jwt, get_current_user, verify_jwt
from src.core.exceptions import AuthenticationError


@pytest.fixture(autouse=True)
def _reset_jwt_manager() -> None:
    """Reset the global JWTManager between tests."""
    import src.api.middleware as mod
    mod._jwt_manager = None


@pytest.fixture(autouse=True)
def _mock_settings() -> Iterator[None]:
    mock_settings = MagicMock()
    mock_settings.metering_jwt_secret.get_secret_value.return_value = "test-secret-key"
    mock_settings.metering_jwt_expiry_hours = 24
    with patch("src.api.middleware.get_settings", return_value=mock_settings):
        yield


def _request(auth_header: str = "") -> MagicMock:
    request = MagicMock()
    request.headers.get.return_value = auth_header
    request.url.path = "/api/usage/current"
    return request


class TestJWTManager:
    def test_round_trip_with_claims(self) -> None:
        token = create_jwt("user-123", extra={"org": "org-1"})
        payload = verify_jwt(token)
        assert payload is not None
        assert payload["sub"] == "user-123"
        assert payload["org"] == "org-1"

    def test_malformed(self) -> None:
        assert verify_jwt("invalid.token.here") is None
        assert verify_jwt("no-dots") is None

    def test_tampered_body(self) -> None:
        header, body, sig = create_jwt("u1").split(".")
        assert verify_jwt(f"{header}.{body}x.{sig}") is None

    def test_wrong_secret(self) -> None:
        token = JWTManager("another-secret").create_token("u1")
        assert verify_jwt(token) is None

    def test_expired(self) -> None:
        manager = JWTManager("test-secret-key", expiry_hours=1)
        with patch("src.api.auth.tokens.time.time", return_value=time.time() - 7200):
            token = manager.create_token("u1")
        assert manager.verify_token(token) is None

    @pytest.mark.parametrize("exp", ["tomorrow", None, [1], {"at": 1}])
    def test_non_numeric_expiry_rejected(self, exp: object) -> None:
        token = create_jwt("u1", extra={"exp": exp})
        assert verify_jwt(token) is None

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            JWTManager("")


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_from_cookie(self) -> None:
        token = create_jwt("user-abc")
        result = await get_current_user(_request(), metering_token=token)
        assert result["sub"] == "user-abc"

    @pytest.mark.asyncio
    async def test_from_bearer_header(self) -> None:
        token = create_jwt("user-xyz")
        result = await get_current_user(_request(f"Bearer {token}"), metering_token=None)
        assert result["sub"] == "user-xyz"

    @pytest.mark.asyncio
    async def test_no_token(self) -> None:
        with pytest.raises(AuthenticationError):
            await get_current_user(_request(), metering_token=None)

    @pytest.mark.asyncio
    async def test_invalid_token(self) -> None:
        with pytest.raises(AuthenticationError):
            await get_current_user(_request(), metering_token="bad-token")

    @pytest.mark.asyncio
    async def test_garbled_expiry_is_401_not_500(self) -> None:
        token = create_jwt("user-abc", extra={"exp": "never"})
        with pytest.raises(AuthenticationError):
            await get_current_user(_request(), metering_token=token)
