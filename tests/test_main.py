"""Integration tests for campus_guard/main.py — the assembled application."""

import httpx
import pytest

from campus_guard.main import app, lifespan
from campus_guard.ratelimit.factory import get_rate_limit_store, get_sweeper


@pytest.fixture
def app_client(override_settings, reset_singletons):
    """httpx AsyncClient wired to the FastAPI app with a small default policy."""
    override_settings(
        RATE_LIMIT_LIMIT="5",
        RATE_LIMIT_BURST="5",
        RATE_LIMIT_WINDOW_MS="60000",
        RATE_LIMIT_ALGORITHM="token-bucket",
    )
    transport = httpx.ASGITransport(app=app)
    client = httpx.AsyncClient(transport=transport, base_url="http://test")
    yield client


class TestHealthEndpoint:

    async def test_health(self, app_client):
        resp = await app_client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert "version" in data

    async def test_health_not_rate_limited(self, app_client):
        resp = await app_client.get("/health")
        assert "X-RateLimit-Limit" not in resp.headers


class TestRateLimiting:

    async def test_five_requests_then_429(self, app_client):
        headers = {"X-Forwarded-For": "203.0.113.7"}
        remaining = []
        for _ in range(5):
            resp = await app_client.get("/rate-limit/status", headers=headers)
            assert resp.status_code == 200
            remaining.append(int(resp.headers["X-RateLimit-Remaining"]))
        assert remaining == [4, 3, 2, 1, 0]

        resp = await app_client.get("/rate-limit/status", headers=headers)
        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert int(resp.headers["Retry-After"]) > 0
        assert resp.json()["error"] == "Rate limit exceeded"

    async def test_status_reports_identity(self, app_client):
        resp = await app_client.get(
            "/rate-limit/status", headers={"CF-Connecting-IP": "198.51.100.10"},
        )
        data = resp.json()
        assert data["enabled"] is True
        assert data["confidence"] == "HIGH"
        assert data["ip_source"] == "cf-connecting-ip"
        assert data["key_namespace"] == "global"
        assert data["limit"] == 5
        assert data["remaining"] == 4

    async def test_status_when_disabled(self, app_client, override_settings):
        override_settings(RATE_LIMIT_ENABLED="false")
        resp = await app_client.get("/rate-limit/status")
        assert resp.json() == {"enabled": False}

    async def test_state_lands_in_shared_store(self, app_client):
        await app_client.get("/rate-limit/status", headers={"X-Real-IP": "198.51.100.20"})
        assert "global:ip:198.51.100.20" in get_rate_limit_store()


class TestLifespan:

    @pytest.mark.usefixtures("restore_audit_logger")
    async def test_sweeper_runs_for_app_lifetime(self, override_settings, reset_singletons):
        override_settings()
        async with lifespan(app):
            assert get_sweeper().running is True
        assert get_sweeper().running is False
