"""Pydantic schemas for rate limit configuration and responses."""

from __future__ import annotations

from typing import Dict, FrozenSet, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RateLimitConfig(BaseModel):
    """Rate limit rule attached to a protected route."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    limit: int = Field(..., gt=0, description="Base number of requests allowed per window.")
    window_seconds: int = Field(
        ...,
        gt=0,
        alias="windowSeconds",
        description="Window length in seconds.",
    )
    message: str | None = Field(
        default=None,
        description="Custom error message returned in 429 responses.",
    )
    role_multipliers: Dict[str, float] = Field(
        default_factory=dict,
        alias="roleMultipliers",
        description="Per-role multiplier applied to the base limit (e.g. {'moderator': 2}).",
    )
    exempt_roles: FrozenSet[str] = Field(
        default_factory=frozenset,
        alias="exemptRoles",
        description="Roles that are never rate limited on this route.",
    )
    bucket: str | None = Field(
        default=None,
        description="Optional counter namespace so this route keeps its own counters.",
    )

    @field_validator("role_multipliers")
    @classmethod
    def _multipliers_positive(cls, value: Dict[str, float]) -> Dict[str, float]:
        for role, multiplier in value.items():
            if multiplier <= 0:
                raise ValueError(f"multiplier for role '{role}' must be > 0")
        return value

    @model_validator(mode="after")
    def _multiplied_limits_allow_a_request(self) -> "RateLimitConfig":
        for role, multiplier in self.role_multipliers.items():
            if self.limit * multiplier < 1:
                raise ValueError(
                    f"multiplier for role '{role}' reduces limit {self.limit} below one request per window"
                )
        return self


class RateLimitExceededResponse(BaseModel):
    """Body of a 429 response."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(..., description="Human-readable error message.")
    retry_after: int = Field(
        ...,
        ge=0,
        alias="retryAfter",
        description="Seconds until the current window resets.",
    )
    limit: int = Field(..., description="Effective limit that was exceeded.")
    window_seconds: int = Field(..., alias="windowSeconds", description="Window length in seconds.")


class RateLimitConfigEntry(BaseModel):
    """A registered rule together with the endpoint it protects."""

    endpoint: str
    config: RateLimitConfig


class RateLimitListResponse(BaseModel):
    """All registered rules plus the fallbacks."""

    rules: List[RateLimitConfigEntry]
    default: RateLimitConfig
    anonymous: RateLimitConfig


class RateLimitMetricsResponse(BaseModel):
    """Violation and fail-open metrics for an endpoint."""

    endpoint: str
    window_seconds: int
    violation_count: int
    top_violators: List[str]
    fail_open_count: int


class RateLimitUsageResponse(BaseModel):
    """Current counter usage for a rate limit key."""

    key: str
    limit: int
    current: int
    utilization_percent: float
