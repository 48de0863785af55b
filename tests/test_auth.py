"""Unit tests for internal token authentication."""

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from app.core.auth import is_bypassed, validate_internal_token, verify_internal_token
from app.core.errors import AuthenticationAppError


def _request_with_secret(secret):
    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(settings=SimpleNamespace(app=SimpleNamespace(internal_api_token=secret))))
    )


class TestIsBypassed:
    """Test exact-match bypass token comparison."""

    def test_exact_match(self) -> None:
        assert is_bypassed("secret123", "secret123") is True

    @pytest.mark.parametrize("provided", ["secret12", "secret1234", "SECRET123", " secret123", ""])
    def test_mismatch(self, provided: str) -> None:
        assert is_bypassed(provided, "secret123") is False

    def test_missing_header(self) -> None:
        assert is_bypassed(None, "secret123") is False

    @pytest.mark.parametrize("secret", [None, ""])
    def test_unconfigured_secret_never_matches(self, secret) -> None:
        """An empty token must not match an empty secret."""
        assert is_bypassed("", secret) is False
        assert is_bypassed("anything", secret) is False

    def test_non_ascii_tokens(self) -> None:
        assert is_bypassed("clé-secrète", "clé-secrète") is True
        assert is_bypassed("cle-secrete", "clé-secrète") is False


class TestValidateInternalToken:
    """Test core token validation logic."""

    def test_accepts_valid_token(self) -> None:
        validate_internal_token("secret123", "secret123")

    def test_raises_when_not_configured(self) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_internal_token("secret123", None)

        assert exc_info.value.code == "internal_token_not_configured"

    def test_rejects_invalid_token(self) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_internal_token("wrong", "secret123")

        assert exc_info.value.code == "invalid_internal_token"
        assert "Invalid or missing internal token" in exc_info.value.message


class TestVerifyInternalTokenDependency:
    """Test FastAPI dependency for admin routes."""

    @pytest.mark.asyncio
    async def test_accepts_valid_token(self) -> None:
        await verify_internal_token(_request_with_secret("secret123"), x_internal_token="secret123")

    @pytest.mark.asyncio
    async def test_raises_403_when_header_missing(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await verify_internal_token(_request_with_secret("secret123"), x_internal_token=None)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_raises_403_when_not_configured(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await verify_internal_token(_request_with_secret(None), x_internal_token="secret123")

        assert exc_info.value.status_code == 403
        assert "no internal token is configured" in exc_info.value.detail
