"""Shared counter store adapters.

The rate limiting service depends on the abstract store only, so the Redis
client used in production can be swapped for the in-memory store in
development and tests without changing the service or the HTTP layer.
"""

from app.adapters.store.base import AbstractCounterStore, CounterSnapshot
from app.adapters.store.factory import create_counter_store
from app.adapters.store.in_memory import InMemoryCounterStore
from app.adapters.store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterSnapshot",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
