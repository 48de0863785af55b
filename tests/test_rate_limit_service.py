"""Unit tests for the fixed-window rate limit service."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.adapters.store.base import CounterSnapshot
from app.core.errors import StoreAppError, StoreConflictError
from app.services.rate_limit_service import RateLimitService


def _conflict() -> StoreConflictError:
    return StoreConflictError(code="store_conflict", message="Counter key was modified concurrently")


class TestCheckLimit:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit_in_same_window(self, store, clock) -> None:
        service = RateLimitService(store, clock=clock)

        results = [await service.check_limit("user:1", 3, 60) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].current == 4

    @pytest.mark.asyncio
    async def test_reset_time_is_end_of_window(self, store, clock) -> None:
        service = RateLimitService(store, clock=clock)
        first = await service.check_limit("user:1", 3, 60)
        clock.advance(15)

        second = await service.check_limit("user:1", 3, 60)

        assert first.reset_time == int(clock() * 1000) + 45_000
        assert second.reset_time == first.reset_time

    @pytest.mark.asyncio
    async def test_keys_are_prefixed_and_namespaced(self, store, clock) -> None:
        service = RateLimitService(store, key_prefix="rl", clock=clock)

        await service.check_limit("user:1", 3, 60)
        await service.check_limit("user:1", 3, 60, namespace="uploads")

        assert await store.get_count("rl:60:user:1") == 1
        assert await store.get_count("rl:uploads:60:user:1") == 1

    @pytest.mark.asyncio
    async def test_windows_of_different_length_keep_separate_counters(self, store, clock) -> None:
        service = RateLimitService(store, clock=clock)

        await service.check_limit("user:1", 100, 60)
        daily = await service.check_limit("user:1", 1, 86400)

        assert daily.allowed is True
        assert daily.current == 1
        assert await store.get_count(service.store_key("user:1", 60)) == 1
        assert await store.get_count(service.store_key("user:1", 86400)) == 1

    @pytest.mark.asyncio
    async def test_short_window_counter_expires_independently(self, store, clock) -> None:
        service = RateLimitService(store, clock=clock)
        await service.check_limit("user:1", 1, 86400)
        for _ in range(3):
            await service.check_limit("user:1", 2, 60)

        clock.advance(120)
        browse = await service.check_limit("user:1", 2, 60)
        create = await service.check_limit("user:1", 1, 86400)

        assert browse.allowed is True
        assert browse.current == 1
        assert create.allowed is False

    @pytest.mark.asyncio
    async def test_missing_ttl_falls_back_to_window(self, clock) -> None:
        store = AsyncMock()
        store.increment_with_expiry.return_value = CounterSnapshot(count=1, ttl_ms=-1)
        service = RateLimitService(store, clock=clock)

        result = await service.check_limit("k", 5, 30)

        assert result.reset_time == int(clock() * 1000) + 30_000

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key,limit,window",
        [("", 1, 60), ("k", 0, 60), ("k", 1, 0)],
    )
    async def test_invalid_args(self, store, key: str, limit: int, window: int) -> None:
        service = RateLimitService(store)

        with pytest.raises(ValueError):
            await service.check_limit(key, limit, window)

    def test_negative_retries_rejected(self, store) -> None:
        with pytest.raises(ValueError):
            RateLimitService(store, max_retries=-1)


class TestConflictRetries:
    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, clock) -> None:
        store = AsyncMock()
        store.increment_with_expiry.side_effect = [
            _conflict(),
            CounterSnapshot(count=1, ttl_ms=60_000, created=True),
        ]
        service = RateLimitService(store, clock=clock)

        result = await service.check_limit("k", 5, 60)

        assert result.allowed is True
        assert store.increment_with_expiry.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_store_error(self, clock) -> None:
        store = AsyncMock()
        store.increment_with_expiry.side_effect = _conflict()
        service = RateLimitService(store, max_retries=2, clock=clock)

        with pytest.raises(StoreAppError) as exc_info:
            await service.check_limit("k", 5, 60)

        assert exc_info.value.code == "store_conflict_retries_exhausted"
        assert exc_info.value.details["attempts"] == 3
        assert store.increment_with_expiry.await_count == 3

    @pytest.mark.asyncio
    async def test_store_errors_are_not_retried(self, clock) -> None:
        store = AsyncMock()
        store.increment_with_expiry.side_effect = StoreAppError(code="store_unavailable", message="down")
        service = RateLimitService(store, clock=clock)

        with pytest.raises(StoreAppError):
            await service.check_limit("k", 5, 60)

        assert store.increment_with_expiry.await_count == 1


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_checks_count_every_request(self, store, clock) -> None:
        service = RateLimitService(store, clock=clock)

        results = await asyncio.gather(*(service.check_limit("user:1", 5, 60) for _ in range(20)))

        assert await store.get_count(service.store_key("user:1", 60)) == 20
        assert sum(r.allowed for r in results) == 5
        assert sorted(r.current for r in results) == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_concurrent_checks_on_different_keys_do_not_interfere(self, store, clock) -> None:
        service = RateLimitService(store, clock=clock)

        results = await asyncio.gather(
            *(service.check_limit(f"user:{i % 4}", 3, 60) for i in range(12))
        )

        assert all(r.allowed for r in results)
        for i in range(4):
            assert await store.get_count(service.store_key(f"user:{i}", 60)) == 3
