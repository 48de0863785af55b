"""Fixed-window rate limit service on top of the shared counter store.

Every check is one atomic increment of the caller's counter key; the key's
TTL marks the end of the window. Because the increment and the read of the
new value happen in the same store transaction, concurrent requests from
different workers can never observe the same count and lose an increment.

The service reports store failures as ``StoreAppError``. Deciding whether to
let the request through is left to the HTTP layer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.store.base import AbstractCounterStore, CounterSnapshot
from app.core.errors import StoreAppError, StoreConflictError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one rate limit check.

    Attributes:
        allowed: Whether the request fits in the current window.
        remaining: Requests left in the window (never negative).
        reset_time: Epoch milliseconds when the window ends.
        current: Counter value including this request.
        limit: Effective limit the request was checked against.
    """

    allowed: bool
    remaining: int
    reset_time: int
    current: int
    limit: int


class RateLimitService:
    """Counts requests per key in fixed windows using the shared store."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        key_prefix: str = "ratelimit",
        max_retries: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Args:
            store: Shared counter store.
            key_prefix: Namespace prepended to every counter key.
            max_retries: Extra attempts after an optimistic-lock conflict.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If max_retries is negative.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self._store = store
        self._key_prefix = key_prefix
        self._max_retries = max_retries
        self._clock = clock

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def store_key(self, key: str, window_seconds: int, namespace: str | None = None) -> str:
        """Build the store key for a rate limit key.

        The window length is part of the key: the TTL is only set when a
        counter is created, so rules with different windows must never
        share a counter.
        """

        if namespace:
            return f"{self._key_prefix}:{namespace}:{window_seconds}:{key}"
        return f"{self._key_prefix}:{window_seconds}:{key}"

    async def check_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        *,
        namespace: str | None = None,
    ) -> CheckResult:
        """Count one request for ``key`` and decide whether it is allowed.

        Args:
            key: Rate limit key (``user:<id>`` or ``ip:<address>``).
            limit: Effective limit for this caller.
            window_seconds: Window length; used as TTL of a fresh counter.
            namespace: Optional counter namespace (per-route buckets).

        Returns:
            CheckResult for this request.

        Raises:
            ValueError: If key is empty or limit/window are not positive.
            StoreAppError: If the store fails or conflicts persist after
                the configured retries.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        store_key = self.store_key(key, window_seconds, namespace)
        snapshot = await self._increment(store_key, window_seconds)

        now_ms = int(self._clock() * 1000)
        ttl_ms = snapshot.ttl_ms if snapshot.ttl_ms > 0 else window_seconds * 1000
        current = max(0, snapshot.count)

        result = CheckResult(
            allowed=current <= limit,
            remaining=max(0, limit - current),
            reset_time=now_ms + ttl_ms,
            current=current,
            limit=limit,
        )

        logger.debug(
            "rate_limit.checked",
            extra={
                "store_key": store_key,
                "current": result.current,
                "limit": limit,
                "allowed": result.allowed,
                "window_s": window_seconds,
            },
        )
        return result

    async def _increment(self, store_key: str, window_seconds: int) -> CounterSnapshot:
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._store.increment_with_expiry(store_key, window_seconds)
            except StoreConflictError:
                logger.info(
                    "rate_limit.conflict_retry",
                    extra={"store_key": store_key, "attempt": attempt, "max_attempts": attempts},
                )

        raise StoreAppError(
            code="store_conflict_retries_exhausted",
            message=f"Counter update conflicted {attempts} times",
            details={"key": store_key, "attempts": attempts},
        )
