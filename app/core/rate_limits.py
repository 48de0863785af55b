"""Rate limit rules for every protected endpoint.

Rules are keyed by ``"METHOD /path"``. Routes that reference a rule by name
(``rate_limit("GET /api/challenges")``) look it up on every request, so
``update_rate_limit`` takes effect immediately without a restart.
"""

from __future__ import annotations

import logging
import threading

from app.schemas.rate_limit import RateLimitConfig

logger = logging.getLogger(__name__)

_MODERATOR_X2 = {"moderator": 2.0}

_lock = threading.RLock()

RATE_LIMITS: dict[str, RateLimitConfig] = {
    # Challenge endpoints
    "GET /api/challenges": RateLimitConfig(limit=100, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "GET /api/challenges/:id": RateLimitConfig(limit=100, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "POST /api/challenges": RateLimitConfig(
        limit=1,
        window_seconds=86400,
        message="You can only create one challenge per 24 hours",
        exempt_roles=frozenset({"moderator"}),
    ),
    "POST /api/challenges/preview": RateLimitConfig(limit=10, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "POST /api/challenges/:id/create-post": RateLimitConfig(
        limit=5, window_seconds=300, role_multipliers=_MODERATOR_X2
    ),
    # Attempt endpoints
    "POST /api/attempts/submit": RateLimitConfig(limit=30, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "POST /api/attempts/giveup": RateLimitConfig(limit=10, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "POST /api/attempts/hint": RateLimitConfig(limit=20, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "GET /api/attempts/user": RateLimitConfig(limit=60, window_seconds=60, role_multipliers=_MODERATOR_X2),
    # Leaderboard endpoints
    "GET /api/leaderboard": RateLimitConfig(limit=60, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "GET /api/leaderboard/user": RateLimitConfig(limit=60, window_seconds=60, role_multipliers=_MODERATOR_X2),
    # User endpoints
    "GET /api/user/profile": RateLimitConfig(limit=60, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "GET /api/user/stats": RateLimitConfig(limit=60, window_seconds=60, role_multipliers=_MODERATOR_X2),
    "PATCH /api/users/:userId": RateLimitConfig(limit=10, window_seconds=60, role_multipliers=_MODERATOR_X2),
}

# Applied to endpoints without an explicit rule
DEFAULT_RATE_LIMIT = RateLimitConfig(limit=60, window_seconds=60, role_multipliers=_MODERATOR_X2)

# Stricter rule for routes that only serve unauthenticated callers
ANONYMOUS_RATE_LIMIT = RateLimitConfig(
    limit=30,
    window_seconds=60,
    message="Too many requests from your IP address. Please try again later.",
)


def get_rate_limit(endpoint: str) -> RateLimitConfig:
    """Return the rule for ``endpoint`` or the default rule.

    Args:
        endpoint: Endpoint pattern, e.g. ``"GET /api/challenges"``.
    """

    with _lock:
        return RATE_LIMITS.get(endpoint, DEFAULT_RATE_LIMIT)


def list_rate_limits() -> dict[str, RateLimitConfig]:
    """Return a snapshot of all registered rules."""

    with _lock:
        return dict(RATE_LIMITS)


def update_rate_limit(endpoint: str, config: RateLimitConfig) -> None:
    """Replace the rule for ``endpoint`` at runtime.

    Only this process is updated; other instances keep their own registry.

    Args:
        endpoint: Endpoint pattern, e.g. ``"POST /api/challenges"``.
        config: New rule.
    """

    with _lock:
        RATE_LIMITS[endpoint] = config

    logger.info(
        "config_updated",
        extra={
            "service": "rate_limit_config",
            "event": "config_updated",
            "endpoint": endpoint,
            "limit": config.limit,
            "windowSeconds": config.window_seconds,
        },
    )
