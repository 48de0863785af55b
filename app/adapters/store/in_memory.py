"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis store for any multi-instance deployment.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import bisect
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from app.adapters.store.base import AbstractCounterStore, CounterSnapshot


@dataclass
class _CounterState:
    count: int
    expires_at: float | None


@dataclass
class _EventStream:
    scores: list[int] = field(default_factory=list)
    members: list[str] = field(default_factory=list)


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping counters and event streams in process memory.

    Mirrors the Redis semantics the rate limiter relies on: a key is
    created by its first increment, expires after its TTL, and an absent
    key reads as zero.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._counters: dict[str, _CounterState] = {}
        self._streams: dict[str, _EventStream] = {}

    def _live_state(self, key: str, now: float) -> _CounterState | None:
        state = self._counters.get(key)
        if state is None:
            return None
        if state.expires_at is not None and state.expires_at <= now:
            del self._counters[key]
            return None
        return state

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> CounterSnapshot:
        """Increment ``key`` and start its TTL when the key is new.

        Raises:
            ValueError: If key is empty or ttl_seconds is invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        now = self._clock()
        with self._lock:
            state = self._live_state(key, now)
            created = state is None
            if state is None:
                state = _CounterState(count=0, expires_at=None)
                self._counters[key] = state
            state.count += 1
            if state.expires_at is None:
                state.expires_at = now + ttl_seconds
            ttl_ms = int(round((state.expires_at - now) * 1000))
            return CounterSnapshot(count=state.count, ttl_ms=ttl_ms, created=created)

    async def get_count(self, key: str) -> int:
        with self._lock:
            state = self._live_state(key, self._clock())
            return state.count if state else 0

    async def add_event(
        self,
        stream: str,
        member: str,
        score_ms: int,
        *,
        retention_seconds: int,
    ) -> None:
        cutoff = score_ms - retention_seconds * 1000
        with self._lock:
            events = self._streams.setdefault(stream, _EventStream())
            index = bisect.bisect_right(events.scores, score_ms)
            events.scores.insert(index, score_ms)
            events.members.insert(index, member)
            # Drop everything at or below the retention cutoff
            keep_from = bisect.bisect_right(events.scores, cutoff)
            del events.scores[:keep_from]
            del events.members[:keep_from]

    async def count_events(self, stream: str, since_ms: int) -> int:
        return len(await self.list_events(stream, since_ms))

    async def list_events(self, stream: str, since_ms: int) -> list[str]:
        with self._lock:
            events = self._streams.get(stream)
            if events is None:
                return []
            start = bisect.bisect_left(events.scores, since_ms)
            return list(events.members[start:])

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Remove all counters and events."""

        with self._lock:
            self._counters.clear()
            self._streams.clear()
