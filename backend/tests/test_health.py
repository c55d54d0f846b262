"""
Health probe: dependency checks decide between healthy, degraded and unhealthy.
"""
from __future__ import annotations

import psycopg
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from backend.tests.utils.api import api_client
from backend.web import wiring

pytestmark = pytest.mark.anyio("asyncio")


class _DownRepo:
    def ping(self):
        raise psycopg.OperationalError("connection refused")


class _DownLimiter:
    async def check(self, name, identifier):
        raise RedisConnectionError("down")

    async def ping(self):
        raise RedisConnectionError("down")


async def test_health_is_public_and_healthy(projects):
    async with api_client() as client:
        r = await client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["rateLimiter"] == {"status": "healthy"}
    assert body["timestamp"].endswith("Z")
    assert r.headers["cache-control"] == "private, no-store"


async def test_database_failure_is_503():
    wiring.set_project_repo(_DownRepo())
    async with api_client() as client:
        r = await client.get("/api/health")
    assert r.status_code == 503
    assert r.json()["status"] == "unhealthy"
    assert r.json()["checks"]["database"] == {"status": "unhealthy"}
    assert "connection refused" not in r.text


async def test_rate_limiter_failure_is_degraded(projects):
    wiring.set_rate_limiter(_DownLimiter())
    async with api_client() as client:
        r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "degraded"


async def test_head_returns_status_without_body(projects):
    wiring.set_project_repo(_DownRepo())
    async with api_client() as client:
        r = await client.head("/api/health")
    assert r.status_code == 503
    assert r.content == b""


async def test_security_headers_are_set(projects):
    async with api_client() as client:
        r = await client.get("/api/health")
    assert r.headers["x-frame-options"] == "DENY"
    assert r.headers["x-content-type-options"] == "nosniff"
    assert "frame-ancestors 'none'" in r.headers["content-security-policy"]
