"""Middleware: security headers, request IDs, rate limiting.

Rate limiting needs Redis; a small in-memory stand-in is swapped into
the pool module so the limiter logic runs without a server.
"""

import pytest
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tenantcrm.config import settings
from tenantcrm.db import redis_pool
from tenantcrm.middleware.request_id import RequestIdMiddleware


class CountingRedis:
    """Just enough of redis.asyncio.Redis for the limiter."""

    def __init__(self):
        self.counters: dict[str, int] = {}

    async def incr(self, key):
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key, seconds):
        return True


@pytest.mark.asyncio
async def test_security_headers(client):
    r = await client.get("/api/auth/me")
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert r.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    r = await client.get("/api/auth/me")
    assert "Strict-Transport-Security" not in r.headers


@pytest.mark.asyncio
async def test_request_id_generated(client):
    r1 = await client.get("/api/auth/me")
    r2 = await client.get("/api/auth/me")
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/api/auth/me", headers={"X-Request-ID": "trace-123"})
    assert r.headers["X-Request-ID"] == "trace-123"


@pytest.mark.asyncio
async def test_unsafe_request_id_is_replaced(client):
    r = await client.get("/api/auth/me", headers={"X-Request-ID": "a b;c"})
    assert r.headers["X-Request-ID"] != "a b;c"

    r = await client.get("/api/auth/me", headers={"X-Request-ID": "x" * 200})
    assert len(r.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_log_context_starts_empty_per_request():
    logged_app = FastAPI()
    logged_app.add_middleware(RequestIdMiddleware)

    @logged_app.get("/ctx")
    async def ctx():
        return structlog.contextvars.get_contextvars()

    # Left over from an earlier authenticated request
    structlog.contextvars.bind_contextvars(user_id="u-1", organization_id="o-1")
    try:
        transport = ASGITransport(app=logged_app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            r = await c.get("/ctx", headers={"X-Request-ID": "trace-9"})
    finally:
        structlog.contextvars.clear_contextvars()

    bound = r.json()
    assert bound == {"request_id": "trace-9", "method": "GET", "path": "/ctx"}



@pytest.mark.asyncio
async def test_no_rate_limit_without_redis(client):
    for _ in range(settings.rate_limit_auth_rpm + 2):
        r = await client.post("/api/auth/login", json={})
        assert r.status_code == 400


@pytest.mark.asyncio
async def test_login_attempts_are_rate_limited(client, monkeypatch):
    monkeypatch.setattr(redis_pool, "_redis", CountingRedis())

    for _ in range(settings.rate_limit_auth_rpm):
        r = await client.post("/api/auth/login", json={})
        assert r.status_code == 400
        assert "X-RateLimit-Remaining" in r.headers

    r = await client.post("/api/auth/login", json={})
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_general_routes_use_default_limit(client, monkeypatch):
    monkeypatch.setattr(redis_pool, "_redis", CountingRedis())
    r = await client.get("/api/auth/me")
    assert r.headers["X-RateLimit-Limit"] == str(settings.rate_limit_rpm)
