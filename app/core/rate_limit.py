"""Rate limiting dependency for FastAPI routes.

This module wires the rate limit service into the HTTP layer.

Per request:
1. A valid ``X-Internal-Token`` bypasses everything (no counter touched).
2. The caller is resolved to ``user:<id>`` or ``ip:<address>`` plus a role.
3. The effective limit is the route limit times the role multiplier.
4. The counter check runs under a hard timeout budget.
5. ``X-RateLimit-*`` headers are set on every outcome; a denied request
   gets a 429 and never reaches the route handler.
6. A timeout or any failure while checking lets the request through
   (fail-open) and is logged as a ``fail_open`` event.

Usage:
    @router.get("/api/leaderboard", dependencies=[Depends(rate_limit("GET /api/leaderboard"))])
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from fastapi import Request, Response

from app.core.auth import INTERNAL_TOKEN_HEADER, is_bypassed
from app.core.config import RateLimitSettings
from app.core.errors import RateLimitExceededError, StoreTimeoutError
from app.core.events import RateLimitEventLogger
from app.core.identity import (
    ResolvedIdentity,
    RoleProvider,
    UserIdProvider,
    anonymous_user_provider,
    get_client_ip,
    no_role_provider,
    resolve_identity,
)
from app.core.rate_limits import get_rate_limit
from app.schemas.rate_limit import RateLimitConfig
from app.services.rate_limit_monitor import RateLimitMonitorService
from app.services.rate_limit_service import CheckResult, RateLimitService

logger = logging.getLogger(__name__)

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"


def effective_limit(config: RateLimitConfig, role: str | None) -> int:
    """Apply the role multiplier of ``role`` to the route limit.

    Anonymous callers (``role is None``) and roles without a configured
    multiplier get the base limit. Multiplied limits are floored;
    configs whose multiplier would floor a limit to zero fail validation.

    Examples:
        >>> effective_limit(RateLimitConfig(limit=10, window_seconds=60, role_multipliers={"moderator": 2}), "moderator")
        20
        >>> effective_limit(RateLimitConfig(limit=10, window_seconds=60, role_multipliers={"moderator": 2}), None)
        10
    """
    if role is None:
        return config.limit

    multiplier = config.role_multipliers.get(role)
    if multiplier is None:
        return config.limit

    return math.floor(config.limit * multiplier)


def _rate_limit_headers(*, limit: int, remaining: int, reset_time: int) -> dict[str, str]:
    return {
        HEADER_LIMIT: str(limit),
        HEADER_REMAINING: str(max(0, remaining)),
        HEADER_RESET: str(reset_time),
    }


class RateLimitEnforcer:
    """Decides allow / deny / fail-open for requests to protected routes."""

    def __init__(
        self,
        service: RateLimitService,
        *,
        rate_limit_settings: RateLimitSettings,
        internal_api_token: str | None = None,
        default_role: str = "user",
        identity_provider: UserIdProvider = anonymous_user_provider,
        role_provider: RoleProvider = no_role_provider,
        monitor: RateLimitMonitorService | None = None,
        events: RateLimitEventLogger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the enforcer.

        Args:
            service: Rate limit service doing the counting.
            rate_limit_settings: Timeout budget and resolution options.
            internal_api_token: Secret accepted in ``X-Internal-Token``.
            default_role: Role for authenticated users without one.
            identity_provider: Async callable returning the caller's user id.
            role_provider: Async callable returning a user's role.
            monitor: Optional violation/fail-open recorder.
            events: Structured event logger.
            clock: Time source returning UNIX time in seconds.
        """
        self._service = service
        self._settings = rate_limit_settings
        self._internal_api_token = internal_api_token
        self._default_role = default_role
        self._identity_provider = identity_provider
        self._role_provider = role_provider
        self._monitor = monitor
        self._events = events or RateLimitEventLogger()
        self._clock = clock

    @property
    def timeout_seconds(self) -> float:
        return self._settings.timeout_ms / 1000

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _resolve(self, request: Request) -> ResolvedIdentity:
        user_id = await self._identity_provider(request)
        client_ip = get_client_ip(request, trust_proxy_headers=self._settings.trust_proxy_headers)
        return await resolve_identity(
            user_id=user_id,
            client_ip=client_ip,
            role_provider=self._role_provider,
            default_role=self._default_role,
            anonymous_bucket=self._settings.anonymous_bucket,
        )

    async def _check(self, identity: ResolvedIdentity, limit: int, config: RateLimitConfig) -> CheckResult:
        try:
            return await asyncio.wait_for(
                self._service.check_limit(
                    identity.key,
                    limit,
                    config.window_seconds,
                    namespace=config.bucket,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StoreTimeoutError(
                code="store_timeout",
                message=f"Counter store did not respond within {self._settings.timeout_ms}ms",
                details={"key": identity.key, "timeout_ms": self._settings.timeout_ms},
            ) from exc

    async def enforce(self, request: Request, response: Response, config: RateLimitConfig) -> None:
        """Apply ``config`` to ``request``.

        Args:
            request: Incoming request.
            response: Response whose headers receive the rate limit headers.
            config: Rule protecting the route.

        Raises:
            RateLimitExceededError: When the caller is over the limit. No
                other exception escapes; failures fail open.
        """
        if not self._settings.enabled:
            return

        endpoint = f"{request.method} {request.url.path}"

        if is_bypassed(request.headers.get(INTERNAL_TOKEN_HEADER), self._internal_api_token):
            self._events.internal_bypass(endpoint)
            return

        identity: ResolvedIdentity | None = None
        limit = config.limit
        try:
            identity = await self._resolve(request)
            if identity.role is not None and identity.role in config.exempt_roles:
                self._events.role_bypass(user_id=identity.user_id, role=identity.role, endpoint=endpoint)
                return

            limit = effective_limit(config, identity.role)
            result = await self._check(identity, limit, config)
        except Exception as exc:  # noqa: BLE001 - every failure here fails open
            await self._fail_open(
                response,
                exc,
                endpoint=endpoint,
                key=identity.key if identity else None,
                limit=limit,
                window_seconds=config.window_seconds,
            )
            return

        headers = _rate_limit_headers(
            limit=limit,
            remaining=result.remaining,
            reset_time=result.reset_time,
        )

        if result.allowed:
            response.headers.update(headers)
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_scope": identity.scope,
                    "limit": limit,
                    "remaining": result.remaining,
                    "window_s": config.window_seconds,
                },
            )
            return

        retry_after = max(0, math.ceil((result.reset_time - self._now_ms()) / 1000))
        headers[HEADER_RETRY_AFTER] = str(retry_after)

        self._events.rate_limit_exceeded(
            user_id=identity.user_id,
            ip=identity.ip,
            endpoint=endpoint,
            key=identity.key,
            limit=limit,
            window_seconds=config.window_seconds,
        )
        if self._monitor is not None:
            await self._monitor.track_violation(identity.key, endpoint, limit, config.window_seconds)

        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message=config.message or self._settings.default_message,
            limit=limit,
            window_seconds=config.window_seconds,
            retry_after=retry_after,
            headers=headers,
        )

    async def _fail_open(
        self,
        response: Response,
        exc: Exception,
        *,
        endpoint: str,
        key: str | None,
        limit: int,
        window_seconds: int,
    ) -> None:
        error = str(exc) or type(exc).__name__
        self._events.fail_open(error=error, endpoint=endpoint, key=key)
        if self._monitor is not None:
            await self._monitor.track_fail_open(error)

        # Nothing is known about the counter; report the full limit and a
        # reset one window from now.
        response.headers.update(
            _rate_limit_headers(
                limit=limit,
                remaining=limit,
                reset_time=self._now_ms() + window_seconds * 1000,
            )
        )


def rate_limit(rule: RateLimitConfig | str) -> Callable[[Request, Response], object]:
    """Build a FastAPI dependency enforcing ``rule``.

    Args:
        rule: A rule, or an endpoint name looked up in the registry on every
            request so runtime updates apply immediately.

    Returns:
        Async dependency to use with ``Depends``.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> None:
        config = get_rate_limit(rule) if isinstance(rule, str) else rule
        enforcer: RateLimitEnforcer = request.app.state.rate_limit_enforcer
        await enforcer.enforce(request, response, config)

    return enforce_rate_limit
