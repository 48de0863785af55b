"""Rate limit monitoring: violation and fail-open history.

Violations are kept per endpoint as timestamped event streams in the shared
store, so every instance contributes to the same history. Tracking runs on
the request path and therefore never raises and is bounded by a timeout;
a failed write is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter
from typing import Awaitable, Callable

from app.adapters.store.base import AbstractCounterStore
from app.core.errors import StoreAppError

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 24 * 60 * 60


class RateLimitMonitorService:
    """Records and queries rate limit violations and fail-open events."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        prefix: str = "ratelimit:metrics",
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        timeout_seconds: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._retention_seconds = retention_seconds
        self._timeout_seconds = timeout_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _violations_stream(self, endpoint: str) -> str:
        return f"{self._prefix}:violations:{endpoint}"

    def _fail_open_stream(self) -> str:
        return f"{self._prefix}:failopen"

    async def _record(self, operation: str, write: Awaitable[None]) -> None:
        try:
            await asyncio.wait_for(write, timeout=self._timeout_seconds)
        except (StoreAppError, asyncio.TimeoutError) as exc:
            logger.warning(
                "rate_limit_monitor.record_failed",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )

    async def track_violation(
        self,
        key: str,
        endpoint: str,
        limit: int,
        window_seconds: int,
    ) -> None:
        """Record one rate limit violation for ``endpoint``.

        Args:
            key: Rate limit key of the offending caller.
            endpoint: ``METHOD path`` of the limited route.
            limit: Limit that was exceeded.
            window_seconds: Window length of the rule.
        """
        now_ms = self._now_ms()
        # Unique suffix keeps two violations in the same millisecond apart
        member = f"{key}:{now_ms}:{uuid.uuid4().hex[:8]}"
        await self._record(
            "track_violation",
            self._store.add_event(
                self._violations_stream(endpoint),
                member,
                now_ms,
                retention_seconds=self._retention_seconds,
            ),
        )
        logger.debug(
            "rate_limit_monitor.violation_tracked",
            extra={"endpoint": endpoint, "limit": limit, "window_s": window_seconds},
        )

    async def track_fail_open(self, reason: str) -> None:
        """Record one fail-open event with its reason."""

        now_ms = self._now_ms()
        member = f"{reason}:{now_ms}:{uuid.uuid4().hex[:8]}"
        await self._record(
            "track_fail_open",
            self._store.add_event(
                self._fail_open_stream(),
                member,
                now_ms,
                retention_seconds=self._retention_seconds,
            ),
        )

    async def get_violation_count(self, endpoint: str, window_seconds: int) -> int:
        """Count violations of ``endpoint`` in the last ``window_seconds``.

        Raises:
            StoreAppError: If the store cannot be read.
        """
        since = self._now_ms() - window_seconds * 1000
        return await self._store.count_events(self._violations_stream(endpoint), since)

    async def get_top_violators(self, endpoint: str, limit: int = 10) -> list[str]:
        """Return the keys with the most violations within the retention period.

        Raises:
            StoreAppError: If the store cannot be read.
        """
        since = self._now_ms() - self._retention_seconds * 1000
        members = await self._store.list_events(self._violations_stream(endpoint), since)

        # Member format is "<key>:<timestamp>:<suffix>" and keys contain ":"
        counts = Counter(member.rsplit(":", 2)[0] for member in members)
        return [key for key, _ in counts.most_common(limit)]

    async def get_fail_open_count(self, window_seconds: int) -> int:
        """Count fail-open events in the last ``window_seconds``."""

        since = self._now_ms() - window_seconds * 1000
        return await self._store.count_events(self._fail_open_stream(), since)

    async def get_current_count(self, counter_key: str) -> int:
        """Return the live counter value stored under ``counter_key``."""

        return await self._store.get_count(counter_key)

    async def get_utilization(self, counter_key: str, limit: int) -> float:
        """Return how much of ``limit`` the counter has used, in percent.

        Values above 100 mean the caller kept sending after being limited.

        Raises:
            ValueError: If limit is not positive.
            StoreAppError: If the store cannot be read.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        current = await self.get_current_count(counter_key)
        return current / limit * 100
