"""Identity and role resolution for rate limiting.

Turns the caller of a request into a rate limit key:
- authenticated callers are limited per user id (``user:<id>``) and carry a
  role that may raise their limit;
- anonymous callers are limited per client address (``ip:<address>``) and
  never get a role multiplier;
- a malformed address falls back to one shared anonymous bucket instead of
  failing the request.

The identity system and the role lookup are external collaborators and are
passed in as async callables.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

from fastapi import Request

logger = logging.getLogger(__name__)

UserIdProvider = Callable[[Request], Awaitable[str | None]]
RoleProvider = Callable[[str], Awaitable[str | None]]

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]{1,128}$")


@dataclass(frozen=True)
class ResolvedIdentity:
    """Rate limit identity of one request.

    Attributes:
        key: Rate limit key, ``user:<id>`` or ``ip:<address>``.
        scope: ``"user"`` or ``"ip"``.
        role: Resolved role for user-scoped identities, None for IP scope.
        user_id: Authenticated user id, if any.
        ip: Client address as seen by the server (may be unvalidated).
    """

    key: str
    scope: Literal["user", "ip"]
    role: str | None
    user_id: str | None
    ip: str | None


async def anonymous_user_provider(request: Request) -> str | None:
    """Default identity provider: every caller is anonymous."""

    return None


async def no_role_provider(user_id: str) -> str | None:
    """Default role provider: no role information available."""

    return None


def is_valid_ip(value: str | None) -> bool:
    """Return True if ``value`` is a well-formed IPv4 or IPv6 literal.

    Examples:
        >>> is_valid_ip("192.168.1.1")
        True
        >>> is_valid_ip("2001:db8::1")
        True
        >>> is_valid_ip("256.1.1.1")
        False
        >>> is_valid_ip("not-an-ip")
        False
    """
    if not value:
        return False
    try:
        ipaddress.ip_address(value.strip())
    except ValueError:
        return False
    return True


def is_valid_user_id(value: str | None) -> bool:
    return bool(value) and _USER_ID_PATTERN.match(value) is not None  # type: ignore[arg-type]


def _first_valid(candidates: list[str]) -> str | None:
    for candidate in candidates:
        candidate = candidate.strip()
        if is_valid_ip(candidate):
            return candidate
    return None


def get_client_ip(request: Request, *, trust_proxy_headers: bool = True) -> str | None:
    """Extract the client address of ``request``.

    With proxy headers trusted, the first valid ``X-Forwarded-For`` entry
    wins, then ``X-Real-IP``; otherwise (or when neither is usable) the
    socket peer address is returned as-is.

    Args:
        request: Incoming request.
        trust_proxy_headers: Whether a reverse proxy sets the forwarding headers.

    Returns:
        The address string, or None when the server has no peer address.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip = _first_valid(forwarded.split(",")[:1])
            if ip:
                return ip

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            ip = _first_valid([real_ip])
            if ip:
                return ip

    return request.client.host if request.client else None


def ip_rate_limit_key(ip: str | None, *, anonymous_bucket: str = "anonymous") -> str:
    """Build the IP-scoped key, falling back to the shared bucket.

    Valid addresses are canonicalised so equivalent spellings of the same
    IPv6 address share one counter.
    """
    if ip and is_valid_ip(ip):
        return f"ip:{ipaddress.ip_address(ip.strip())}"

    logger.debug("identity.invalid_ip", extra={"client_ip": ip})
    return f"ip:{anonymous_bucket}"


async def resolve_identity(
    *,
    user_id: str | None,
    client_ip: str | None,
    role_provider: RoleProvider = no_role_provider,
    default_role: str = "user",
    anonymous_bucket: str = "anonymous",
) -> ResolvedIdentity:
    """Resolve the rate limit key and role for a caller.

    Args:
        user_id: Authenticated user id from the identity provider, if any.
        client_ip: Client address from ``get_client_ip``.
        role_provider: Async lookup of a user's role.
        default_role: Role used when the provider returns nothing.
        anonymous_bucket: Identifier shared by callers with a malformed address.

    Returns:
        ResolvedIdentity for the caller.
    """
    if user_id is not None and not is_valid_user_id(user_id):
        logger.warning("identity.invalid_user_id", extra={"user_id_length": len(user_id)})
        user_id = None

    if user_id:
        role = await role_provider(user_id) or default_role
        return ResolvedIdentity(
            key=f"user:{user_id}",
            scope="user",
            role=role,
            user_id=user_id,
            ip=client_ip,
        )

    return ResolvedIdentity(
        key=ip_rate_limit_key(client_ip, anonymous_bucket=anonymous_bucket),
        scope="ip",
        role=None,
        user_id=None,
        ip=client_ip,
    )
