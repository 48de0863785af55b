"""Factory for creating counter store instances."""

from __future__ import annotations

import logging

from app.adapters.store.base import AbstractCounterStore
from app.adapters.store.in_memory import InMemoryCounterStore
from app.adapters.store.redis_store import RedisCounterStore
from app.core.config import StoreSettings, settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)


def create_counter_store(store_settings: StoreSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by configuration.

    Args:
        store_settings: Optional store settings; defaults to global settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "redis":
        return RedisCounterStore.from_url(
            cfg.url,
            socket_timeout=cfg.socket_timeout_seconds,
            socket_connect_timeout=cfg.connect_timeout_seconds,
        )

    if backend == "memory":
        logger.warning(
            "store.in_memory_backend",
            extra={"reason": "limits are enforced per process only"},
        )
        return InMemoryCounterStore()

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
    )
