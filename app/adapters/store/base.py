"""Counter store interfaces.

The rate limiting service talks to this abstraction (not the concrete
client) so the storage backend can be swapped with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterSnapshot:
    """State of a counter key right after an increment.

    Attributes:
        count: Counter value after the increment (1 for a fresh window).
        ttl_ms: Remaining time to live of the key in milliseconds. Zero or
            negative when the store could not report a TTL.
        created: Whether this increment created the key (first write of
            the window).
    """

    count: int
    ttl_ms: int
    created: bool = False


class AbstractCounterStore(ABC):
    """Interface for the shared key-value store backing the rate limiter."""

    @abstractmethod
    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> CounterSnapshot:
        """Atomically increment ``key`` by one and start its TTL on creation.

        The TTL is set only when the increment created the key, so the
        window boundary is fixed by the first request of the window.

        Args:
            key: Fully-qualified store key.
            ttl_seconds: Window size applied as TTL to a fresh key.

        Returns:
            CounterSnapshot describing the key after the increment.

        Raises:
            StoreConflictError: If a concurrent writer invalidated the
                transaction. Callers may retry.
            StoreAppError: If the store is unreachable or rejects the call.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_count(self, key: str) -> int:
        """Return the current value of a counter key (0 when absent)."""
        raise NotImplementedError

    @abstractmethod
    async def add_event(
        self,
        stream: str,
        member: str,
        score_ms: int,
        *,
        retention_seconds: int,
    ) -> None:
        """Append a timestamped member to an event stream.

        Members older than ``retention_seconds`` are trimmed as part of the
        same call.
        """
        raise NotImplementedError

    @abstractmethod
    async def count_events(self, stream: str, since_ms: int) -> int:
        """Count stream members with a score at or after ``since_ms``."""
        raise NotImplementedError

    @abstractmethod
    async def list_events(self, stream: str, since_ms: int) -> list[str]:
        """Return stream members with a score at or after ``since_ms``."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers."""
        raise NotImplementedError

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release connections held by the store."""
