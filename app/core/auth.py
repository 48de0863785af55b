"""Internal token authentication.

Trusted internal callers present a shared secret in the ``X-Internal-Token``
header. A valid token lets a request bypass rate limiting and grants access
to the rate limit admin API.

Design principles:
- The secret comes from configuration built once at startup and is passed
  in explicitly; nothing here reads the environment.
- Comparison is exact and constant-time.
- A missing or empty value on either side never authenticates.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from app.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)

INTERNAL_TOKEN_HEADER = "X-Internal-Token"


def is_bypassed(provided_token: str | None, configured_secret: str | None) -> bool:
    """Return True only if ``provided_token`` exactly matches the secret.

    Args:
        provided_token: Token taken from the request header, if any.
        configured_secret: Operator-configured secret, if any.

    Returns:
        True on an exact byte-for-byte match, False otherwise.

    Examples:
        >>> is_bypassed("secret123", "secret123")
        True
        >>> is_bypassed("secret12", "secret123")
        False
        >>> is_bypassed("", "secret123")
        False
        >>> is_bypassed("secret123", None)
        False
    """
    if not provided_token or not configured_secret:
        return False

    return hmac.compare_digest(
        provided_token.encode("utf-8"),
        configured_secret.encode("utf-8"),
    )


def validate_internal_token(provided_token: str | None, configured_secret: str | None) -> None:
    """Validate an internal token for the admin API.

    Pure validation logic without FastAPI dependencies for easy testing.

    Raises:
        AuthenticationAppError: If no secret is configured or the token does
            not match.
    """
    if not configured_secret:
        logger.error(
            "internal_token_validation_failed",
            extra={"reason": "internal_token_not_configured"},
        )
        raise AuthenticationAppError(
            code="internal_token_not_configured",
            message="Internal API access is disabled because no internal token is configured",
            details={"hint": "Set APP_INTERNAL_API_TOKEN to enable the admin API"},
        )

    if not is_bypassed(provided_token, configured_secret):
        token_hash = (
            hashlib.sha256(provided_token.encode()).hexdigest()[:16] if provided_token else None
        )
        logger.warning(
            "internal_token_validation_failed",
            extra={"reason": "invalid_internal_token", "token_hash": token_hash},
        )
        raise AuthenticationAppError(
            code="invalid_internal_token",
            message="Invalid or missing internal token",
        )


async def verify_internal_token(
    request: Request,
    x_internal_token: Annotated[str | None, Header(alias=INTERNAL_TOKEN_HEADER)] = None,
) -> None:
    """FastAPI dependency restricting a route to trusted internal callers.

    Usage:
        @router.get("/admin", dependencies=[Depends(verify_internal_token)])

    Raises:
        HTTPException: 403 Forbidden if the token is missing or invalid.
    """
    configured_secret = request.app.state.settings.app.internal_api_token

    try:
        validate_internal_token(x_internal_token, configured_secret)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc
