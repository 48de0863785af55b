"""Admin API for rate limit rules, metrics and usage.

Every route requires the internal token. Rule updates only affect the
registry of the instance that receives them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.core.auth import verify_internal_token
from app.core.rate_limits import (
    ANONYMOUS_RATE_LIMIT,
    DEFAULT_RATE_LIMIT,
    get_rate_limit,
    list_rate_limits,
    update_rate_limit,
)
from app.schemas.rate_limit import (
    RateLimitConfig,
    RateLimitConfigEntry,
    RateLimitListResponse,
    RateLimitMetricsResponse,
    RateLimitUsageResponse,
)
from app.services.rate_limit_monitor import RateLimitMonitorService
from app.services.rate_limit_service import RateLimitService

router = APIRouter(
    prefix="/rate-limits",
    tags=["Rate Limits"],
    dependencies=[Depends(verify_internal_token)],
)

_ENDPOINT_QUERY = Query(
    ...,
    min_length=1,
    description='Endpoint pattern, e.g. "POST /api/challenges".',
)


def _get_monitor(request: Request) -> RateLimitMonitorService:
    monitor: RateLimitMonitorService | None = request.app.state.rate_limit_monitor
    if monitor is None:
        raise HTTPException(status_code=404, detail="Rate limit monitoring is disabled")
    return monitor


@router.get("", response_model=RateLimitListResponse)
async def list_rules() -> RateLimitListResponse:
    """List every registered rule plus the default and anonymous rules."""

    rules = [
        RateLimitConfigEntry(endpoint=endpoint, config=config)
        for endpoint, config in sorted(list_rate_limits().items())
    ]
    return RateLimitListResponse(
        rules=rules,
        default=DEFAULT_RATE_LIMIT,
        anonymous=ANONYMOUS_RATE_LIMIT,
    )


@router.get("/config", response_model=RateLimitConfigEntry)
async def get_rule(endpoint: str = _ENDPOINT_QUERY) -> RateLimitConfigEntry:
    """Return the rule applied to ``endpoint`` (the default rule if none is registered)."""

    return RateLimitConfigEntry(endpoint=endpoint, config=get_rate_limit(endpoint))


@router.put("/config", response_model=RateLimitConfigEntry)
async def put_rule(config: RateLimitConfig, endpoint: str = _ENDPOINT_QUERY) -> RateLimitConfigEntry:
    """Replace the rule for ``endpoint``.

    Routes that reference the rule by name pick it up on their next request.
    Invalid bodies are rejected with 422 before the registry is touched.
    """

    update_rate_limit(endpoint, config)
    return RateLimitConfigEntry(endpoint=endpoint, config=config)


@router.get("/metrics", response_model=RateLimitMetricsResponse)
async def get_metrics(
    endpoint: str = _ENDPOINT_QUERY,
    window_seconds: int = Query(3600, ge=1, le=86400, description="Look-back window in seconds."),
    top: int = Query(10, ge=1, le=100, description="Number of top violators to return."),
    monitor: RateLimitMonitorService = Depends(_get_monitor),
) -> RateLimitMetricsResponse:
    """Violation and fail-open metrics.

    Raises:
        HTTPException: 404 if monitoring is disabled.
        StoreAppError: Rendered as 503 when the store cannot be read.
    """

    return RateLimitMetricsResponse(
        endpoint=endpoint,
        window_seconds=window_seconds,
        violation_count=await monitor.get_violation_count(endpoint, window_seconds),
        top_violators=await monitor.get_top_violators(endpoint, limit=top),
        fail_open_count=await monitor.get_fail_open_count(window_seconds),
    )


@router.get("/usage", response_model=RateLimitUsageResponse)
async def get_usage(
    request: Request,
    key: str = Query(..., min_length=1, description='Rate limit key, e.g. "user:42" or "ip:10.0.0.1".'),
    limit: int = Query(..., ge=1, description="Limit to compute utilization against."),
    window_seconds: int = Query(..., ge=1, description="Window length of the rule whose counter is read."),
    bucket: str | None = Query(None, description="Counter namespace of routes with their own bucket."),
    monitor: RateLimitMonitorService = Depends(_get_monitor),
) -> RateLimitUsageResponse:
    """Current counter value and utilization for ``key``."""

    service: RateLimitService = request.app.state.rate_limit_service
    counter_key = service.store_key(key, window_seconds, bucket)
    current = await monitor.get_current_count(counter_key)
    utilization = await monitor.get_utilization(counter_key, limit)
    return RateLimitUsageResponse(
        key=key,
        limit=limit,
        current=current,
        utilization_percent=round(utilization, 2),
    )
