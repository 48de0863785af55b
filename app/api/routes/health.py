from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Used by load balancers and monitoring systems to determine service health.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check endpoint.

    Pings the counter store. The API keeps serving while the store is down
    (rate limiting fails open), but the instance reports itself not ready.

    Returns:
        JSONResponse: 200 with ``{"status": "ok", "store": "ok"}`` or 503
            with ``{"status": "degraded", "store": "unavailable"}``.
    """

    if await request.app.state.store.ping():
        return JSONResponse(status_code=200, content={"status": "ok", "store": "ok"})
    return JSONResponse(status_code=503, content={"status": "degraded", "store": "unavailable"})
