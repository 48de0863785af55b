"""Structured rate limit events.

Each event is one log record whose ``extra`` fields follow a fixed schema,
rendered as a single JSON line by ``JsonFormatter``:

- ``internal_bypass`` (info): service, event, endpoint
- ``role_bypass`` (info): service, event, userId, role, endpoint
- ``rate_limit_exceeded`` (warn): service, event, userId, ip, endpoint, key,
  limit, windowSeconds
- ``fail_open`` (error): service, event, error, endpoint, key

``level`` and ``timestamp`` are added by the formatter. Logging goes through
the standard library, which reports handler failures itself instead of
raising into the request.
"""

from __future__ import annotations

import logging

SERVICE_NAME = "rate_limit_middleware"

INTERNAL_BYPASS = "internal_bypass"
ROLE_BYPASS = "role_bypass"
RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
FAIL_OPEN = "fail_open"


class RateLimitEventLogger:
    """Emits the rate limit event records."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("app.rate_limit.events")

    def _emit(self, level: int, event: str, **fields: object) -> None:
        self._logger.log(
            level,
            event,
            extra={"service": SERVICE_NAME, "event": event, **fields},
        )

    def internal_bypass(self, endpoint: str) -> None:
        self._emit(logging.INFO, INTERNAL_BYPASS, endpoint=endpoint)

    def role_bypass(self, *, user_id: str | None, role: str | None, endpoint: str) -> None:
        self._emit(logging.INFO, ROLE_BYPASS, userId=user_id, role=role, endpoint=endpoint)

    def rate_limit_exceeded(
        self,
        *,
        user_id: str | None,
        ip: str | None,
        endpoint: str,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> None:
        self._emit(
            logging.WARNING,
            RATE_LIMIT_EXCEEDED,
            userId=user_id or "anonymous",
            ip=ip,
            endpoint=endpoint,
            key=key,
            limit=limit,
            windowSeconds=window_seconds,
        )

    def fail_open(self, *, error: str, endpoint: str, key: str | None) -> None:
        self._emit(logging.ERROR, FAIL_OPEN, error=error, endpoint=endpoint, key=key)
