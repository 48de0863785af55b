"""Tests for the route rule registry, rule schema and effective limits."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core import rate_limits
from app.core.rate_limit import effective_limit
from app.schemas.rate_limit import RateLimitConfig


@pytest.fixture(autouse=True)
def restore_registry():
    snapshot = dict(rate_limits.RATE_LIMITS)
    yield
    rate_limits.RATE_LIMITS.clear()
    rate_limits.RATE_LIMITS.update(snapshot)


class TestRegistry:
    def test_challenge_creation_rule(self) -> None:
        config = rate_limits.get_rate_limit("POST /api/challenges")

        assert config.limit == 1
        assert config.window_seconds == 86400
        assert "moderator" in config.exempt_roles

    def test_unknown_endpoint_gets_default(self) -> None:
        assert rate_limits.get_rate_limit("DELETE /api/unknown") is rate_limits.DEFAULT_RATE_LIMIT

    def test_update_is_visible_immediately(self) -> None:
        new_rule = RateLimitConfig(limit=7, window_seconds=30)

        rate_limits.update_rate_limit("GET /api/leaderboard", new_rule)

        assert rate_limits.get_rate_limit("GET /api/leaderboard") is new_rule
        assert rate_limits.list_rate_limits()["GET /api/leaderboard"] is new_rule

    def test_list_is_a_snapshot(self) -> None:
        snapshot = rate_limits.list_rate_limits()
        snapshot["GET /api/injected"] = RateLimitConfig(limit=1, window_seconds=1)

        assert "GET /api/injected" not in rate_limits.RATE_LIMITS


class TestRateLimitConfig:
    def test_accepts_aliases_and_field_names(self) -> None:
        by_alias = RateLimitConfig.model_validate({"limit": 5, "windowSeconds": 60, "exemptRoles": ["admin"]})
        by_name = RateLimitConfig(limit=5, window_seconds=60, exempt_roles=frozenset({"admin"}))

        assert by_alias == by_name

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"limit": 0, "window_seconds": 60},
            {"limit": 1, "window_seconds": 0},
            {"limit": 1, "window_seconds": 60, "role_multipliers": {"moderator": -1}},
        ],
    )
    def test_rejects_invalid_rules(self, kwargs: dict) -> None:
        with pytest.raises(ValidationError):
            RateLimitConfig(**kwargs)

    def test_is_immutable(self) -> None:
        config = RateLimitConfig(limit=1, window_seconds=60)

        with pytest.raises(ValidationError):
            config.limit = 2


class TestEffectiveLimit:
    @pytest.mark.parametrize(
        "role,expected",
        [
            ("moderator", 20),
            ("user", 10),
            (None, 10),
        ],
    )
    def test_multiplier_by_role(self, role, expected: int) -> None:
        config = RateLimitConfig(limit=10, window_seconds=60, role_multipliers={"moderator": 2})

        assert effective_limit(config, role) == expected

    def test_floors_fractional_limits(self) -> None:
        config = RateLimitConfig(limit=3, window_seconds=60, role_multipliers={"trial": 1.5})

        assert effective_limit(config, "trial") == 4

    def test_fractional_result_is_floored(self) -> None:
        config = RateLimitConfig(limit=10, window_seconds=60, role_multipliers={"restricted": 0.15})

        assert effective_limit(config, "restricted") == 1

    def test_multiplier_reducing_limit_to_zero_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="below one request"):
            RateLimitConfig(limit=1, window_seconds=60, role_multipliers={"restricted": 0.1})
