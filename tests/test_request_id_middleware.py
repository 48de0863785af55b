from __future__ import annotations

from fastapi.testclient import TestClient

from app.main import app
from app.schemas.rate_limit import RateLimitConfig


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    generated = resp.headers.get("X-Request-ID")
    assert generated
    assert isinstance(generated, str)
    assert len(generated) > 0

    duration = resp.headers.get("X-Request-Duration-ms")
    assert duration is not None


def test_rejected_requests_keep_request_and_rate_limit_headers(make_client):
    limited = make_client(RateLimitConfig(limit=1, window_seconds=60))
    limited.get("/limited")

    resp = limited.get("/limited", headers={"X-Request-ID": "req-429"})

    assert resp.status_code == 429
    assert resp.headers["X-Request-ID"] == "req-429"
    assert resp.headers["X-RateLimit-Limit"] == "1"
    assert resp.headers["Retry-After"] == "60"
