"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It ensures that the TESTING environment variable is set to prevent
loading the .env file during tests, and that the global settings select
the in-memory counter store.
"""

import logging
import os

# CRITICAL: Set this before any imports that might load settings
# This prevents Pydantic from loading the .env file in tests
os.environ["TESTING"] = "true"

# Set default env vars that all tests might need
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("APP_INTERNAL_API_TOKEN", "secret123")
os.environ.setdefault("LOG_LEVEL", "INFO")

from typing import Callable  # noqa: E402

import pytest  # noqa: E402
from fastapi import Depends, FastAPI, Request  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.adapters.store.base import AbstractCounterStore  # noqa: E402
from app.adapters.store.in_memory import InMemoryCounterStore  # noqa: E402
from app.core.app_factory import create_app  # noqa: E402
from app.core.config import (  # noqa: E402
    AppSettings,
    LogSettings,
    RateLimitSettings,
    Settings,
    StoreSettings,
)
from app.core.rate_limit import rate_limit  # noqa: E402
from app.schemas.rate_limit import RateLimitConfig  # noqa: E402

BYPASS_SECRET = "secret123"
USER_HEADER = "X-Test-User"


class FakeClock:
    """Settable time source shared by the store and the rate limiter."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ListHandler(logging.Handler):
    """Collects log records in memory."""

    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def events(self, name: str) -> list[logging.LogRecord]:
        return [r for r in self.records if getattr(r, "event", None) == name]


async def header_user_provider(request: Request) -> str | None:
    return request.headers.get(USER_HEADER)


def dict_role_provider(roles: dict[str, str]):
    async def provider(user_id: str) -> str | None:
        return roles.get(user_id)

    return provider


def build_settings(
    *,
    internal_api_token: str | None = BYPASS_SECRET,
    **rate_limit_overrides,
) -> Settings:
    return Settings(
        app=AppSettings(internal_api_token=internal_api_token),
        rate_limit=RateLimitSettings(**rate_limit_overrides),
        store=StoreSettings(backend="memory"),
        log=LogSettings(level="INFO"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def event_log():
    """Capture rate limit event records.

    ``create_app`` reconfigures the root logger, so the handler is attached
    to the events logger directly instead of relying on caplog.
    """
    handler = ListHandler()
    events_logger = logging.getLogger("app.rate_limit.events")
    events_logger.addHandler(handler)
    try:
        yield handler
    finally:
        events_logger.removeHandler(handler)


@pytest.fixture
def make_client(clock: FakeClock, store: InMemoryCounterStore) -> Callable[..., TestClient]:
    """Build a client for an app with one protected route, ``GET /limited``."""

    def _make(
        rule: RateLimitConfig | str,
        *,
        roles: dict[str, str] | None = None,
        counter_store: AbstractCounterStore | None = None,
        app_settings: Settings | None = None,
    ) -> TestClient:
        app: FastAPI = create_app(
            app_settings=app_settings or build_settings(),
            store=counter_store or store,
            identity_provider=header_user_provider,
            role_provider=dict_role_provider(roles or {}),
            clock=clock,
        )

        @app.get("/limited", dependencies=[Depends(rate_limit(rule))])
        async def limited() -> dict:
            return {"ok": True}

        return TestClient(app)

    return _make
