"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the rate limit components) to improve testability. Collaborators that live
outside this service (identity, roles, the counter store, the clock) are
injected here and stored on ``app.state``.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.adapters.store.base import AbstractCounterStore
from app.adapters.store.factory import create_counter_store
from app.api.routes import health_router, rate_limits_router
from app.core.config import Settings, settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.identity import (
    RoleProvider,
    UserIdProvider,
    anonymous_user_provider,
    no_role_provider,
)
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import RateLimitEnforcer
from app.services.rate_limit_monitor import RateLimitMonitorService
from app.services.rate_limit_service import RateLimitService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "app.startup",
        extra={
            "store_backend": type(app.state.store).__name__,
            "rate_limit_enabled": app.state.settings.rate_limit.enabled,
        },
    )
    try:
        yield
    finally:
        await app.state.store.close()
        logger.info("app.shutdown")


def create_app(
    *,
    app_settings: Settings | None = None,
    store: AbstractCounterStore | None = None,
    identity_provider: UserIdProvider = anonymous_user_provider,
    role_provider: RoleProvider = no_role_provider,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the global settings.
        store: Counter store; built from ``app_settings.store`` if omitted.
        identity_provider: Async callable returning the caller's user id.
        role_provider: Async callable returning a user's role.
        clock: Time source shared by the rate limit components.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    counter_store = store or create_counter_store(cfg.store)
    rate_limit_cfg = cfg.rate_limit

    service = RateLimitService(
        counter_store,
        key_prefix=rate_limit_cfg.key_prefix,
        max_retries=rate_limit_cfg.max_retries,
        clock=clock,
    )
    monitor = None
    if rate_limit_cfg.monitor_enabled:
        monitor = RateLimitMonitorService(
            counter_store,
            prefix=f"{rate_limit_cfg.key_prefix}:metrics",
            retention_seconds=rate_limit_cfg.monitor_retention_seconds,
            timeout_seconds=rate_limit_cfg.timeout_ms / 1000,
            clock=clock,
        )
    enforcer = RateLimitEnforcer(
        service,
        rate_limit_settings=rate_limit_cfg,
        internal_api_token=cfg.app.internal_api_token,
        default_role=cfg.app.default_role,
        identity_provider=identity_provider,
        role_provider=role_provider,
        monitor=monitor,
        clock=clock,
    )

    app = FastAPI(
        title="Rate Limit API",
        description=(
            "Distributed fixed-window rate limiting for FastAPI routes. Counters "
            "live in a shared Redis store, callers are limited per user or per "
            "client address, trusted internal callers bypass limits with "
            "X-Internal-Token, and store failures fail open."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=_lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    app.state.settings = cfg
    app.state.store = counter_store
    app.state.rate_limit_service = service
    app.state.rate_limit_monitor = monitor
    app.state.rate_limit_enforcer = enforcer

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags)
    apply_openapi_customizations(app)

    return app
