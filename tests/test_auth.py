"""Unit tests for API key authentication."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from app.core.auth import authenticate_caller, parse_api_keys, resolve_user_id, verify_admin_key
from app.core.errors import AuthenticationAppError


def _request() -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": [], "state": {}})


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_user_key_pairs(self) -> None:
        assert parse_api_keys("alice:k1,bob:k2") == {"k1": "alice", "k2": "bob"}

    def test_parse_keys_with_whitespace(self) -> None:
        assert parse_api_keys(" alice : k1 ,  bob:k2 ") == {"k1": "alice", "k2": "bob"}

    def test_bare_key_gets_hashed_user_id(self) -> None:
        result = parse_api_keys("lonely-key")

        assert list(result) == ["lonely-key"]
        assert result["lonely-key"].startswith("key:")
        assert "lonely-key" not in result["lonely-key"]

    @pytest.mark.parametrize("value", [None, "", "   ,  ,  "])
    def test_parse_empty_returns_empty_dict(self, value) -> None:
        assert parse_api_keys(value) == {}

    def test_entries_without_key_are_skipped(self) -> None:
        assert parse_api_keys("alice:,bob:k2") == {"k2": "bob"}


class TestResolveUserId:
    @patch("app.core.auth.settings")
    def test_resolves_configured_key(self, mock_settings) -> None:
        mock_settings.app.api_keys = "alice:k1"

        assert resolve_user_id("k1") == "alice"

    @patch("app.core.auth.settings")
    def test_rejects_unknown_key(self, mock_settings) -> None:
        mock_settings.app.api_keys = "alice:k1"

        with pytest.raises(AuthenticationAppError) as exc_info:
            resolve_user_id("k2")

        assert exc_info.value.code == "invalid_api_key"


class TestAuthenticateCaller:
    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_valid_key_sets_user_id_on_request(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "alice:k1"
        request = _request()

        user_id = await authenticate_caller(request, x_api_key="k1")

        assert user_id == "alice"
        assert request.state.user_id == "alice"

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_anonymous_allowed_when_not_required(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False
        request = _request()

        assert await authenticate_caller(request, x_api_key=None) is None
        assert getattr(request.state, "user_id", None) is None

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_missing_key_403_when_required(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True

        with pytest.raises(HTTPException) as exc_info:
            await authenticate_caller(_request(), x_api_key=None)

        assert exc_info.value.status_code == 403
        assert "Missing API key" in exc_info.value.detail

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_invalid_key_403_even_when_optional(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False
        mock_settings.app.api_keys = "alice:k1"

        with pytest.raises(HTTPException) as exc_info:
            await authenticate_caller(_request(), x_api_key="wrong")

        assert exc_info.value.status_code == 403


class TestVerifyAdminKey:
    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_accepts_admin_key(self, mock_settings) -> None:
        mock_settings.app.admin_api_keys = "root-1, root-2"

        await verify_admin_key(x_api_key="root-2")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", [None, "", "alice-key"])
    @patch("app.core.auth.settings")
    async def test_rejects_other_keys(self, mock_settings, key) -> None:
        mock_settings.app.admin_api_keys = "root-1"

        with pytest.raises(HTTPException) as exc_info:
            await verify_admin_key(x_api_key=key)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    @patch("app.core.auth.settings")
    async def test_no_admin_keys_configured_rejects_all(self, mock_settings) -> None:
        mock_settings.app.admin_api_keys = None

        with pytest.raises(HTTPException):
            await verify_admin_key(x_api_key="anything")
