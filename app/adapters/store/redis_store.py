"""Redis-backed counter store.

Counters are plain integer keys with a TTL. The increment runs as one
optimistic transaction:

    WATCH key
    PTTL key                  (immediate, tells us whether the key exists)
    MULTI
    INCRBY key 1
    EXPIRE key <window>       (only when the key had no TTL)
    PTTL key
    EXEC

If another client touches the key between WATCH and EXEC, Redis aborts the
transaction and ``StoreConflictError`` is raised so the caller can retry.
Event streams used by the monitor are sorted sets scored by epoch ms.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from app.adapters.store.base import AbstractCounterStore, CounterSnapshot
from app.core.errors import StoreAppError, StoreConflictError

logger = logging.getLogger(__name__)

# PTTL replies for a missing key and for a key without expiry
_PTTL_MISSING = -2
_PTTL_NO_EXPIRY = -1


def _to_int(value: object) -> int:
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return int(value) if value is not None else 0  # type: ignore[arg-type]


def _to_str(value: object) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisCounterStore(AbstractCounterStore):
    """Counter store on top of ``redis.asyncio``."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float | None = None,
        socket_connect_timeout: float | None = None,
    ) -> "RedisCounterStore":
        """Build a store with a pooled client for ``url``.

        The connection is opened lazily on the first command.
        """
        client = redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            decode_responses=True,
        )
        return cls(client)

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> CounterSnapshot:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current_ttl = _to_int(await pipe.pttl(key))
                # A key without expiry can only be left behind if a previous
                # EXPIRE was lost; give it the window so it cannot live forever.
                needs_expiry = current_ttl in (_PTTL_MISSING, _PTTL_NO_EXPIRY)

                pipe.multi()
                pipe.incrby(key, 1)
                if needs_expiry:
                    pipe.expire(key, ttl_seconds)
                pipe.pttl(key)
                results = await pipe.execute()
        except WatchError as exc:
            logger.debug("store.conflict", extra={"store_key": key})
            raise StoreConflictError(
                code="store_conflict",
                message="Counter key was modified concurrently",
                details={"key": key},
            ) from exc
        except RedisError as exc:
            raise StoreAppError(
                code="store_unavailable",
                message=f"Counter store error: {exc}",
                details={"key": key},
            ) from exc

        return CounterSnapshot(
            count=_to_int(results[0]),
            ttl_ms=_to_int(results[-1]),
            created=current_ttl == _PTTL_MISSING,
        )

    async def get_count(self, key: str) -> int:
        try:
            return _to_int(await self._client.get(key))
        except RedisError as exc:
            raise StoreAppError(
                code="store_unavailable",
                message=f"Counter store error: {exc}",
                details={"key": key},
            ) from exc

    async def add_event(
        self,
        stream: str,
        member: str,
        score_ms: int,
        *,
        retention_seconds: int,
    ) -> None:
        cutoff = score_ms - retention_seconds * 1000
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zadd(stream, {member: score_ms})
                pipe.zremrangebyscore(stream, 0, cutoff)
                pipe.expire(stream, retention_seconds)
                await pipe.execute()
        except RedisError as exc:
            raise StoreAppError(
                code="store_unavailable",
                message=f"Counter store error: {exc}",
                details={"key": stream},
            ) from exc

    async def count_events(self, stream: str, since_ms: int) -> int:
        try:
            return _to_int(await self._client.zcount(stream, since_ms, "+inf"))
        except RedisError as exc:
            raise StoreAppError(
                code="store_unavailable",
                message=f"Counter store error: {exc}",
                details={"key": stream},
            ) from exc

    async def list_events(self, stream: str, since_ms: int) -> list[str]:
        try:
            members = await self._client.zrangebyscore(stream, since_ms, "+inf")
        except RedisError as exc:
            raise StoreAppError(
                code="store_unavailable",
                message=f"Counter store error: {exc}",
                details={"key": stream},
            ) from exc
        return [_to_str(member) for member in members]

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("store.ping_failed", extra={"error_msg": str(exc)})
            return False

    async def close(self) -> None:
        await self._client.aclose()
