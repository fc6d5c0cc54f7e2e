"""
Tests for the Redis stats mirror and the readiness check that depends on it.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from shiptracker.api.main import app
from shiptracker.core.config import settings
from shiptracker.feed import connector as connector_module
from shiptracker.services import redis_client
from tests.fakes import FakeFeed


class TestStatsMirror:
    @pytest.mark.asyncio
    async def test_write_stats_sets_key_with_expiry(self, monkeypatch):
        monkeypatch.setattr(settings, "STATS_TTL_SEC", 15)
        fake_redis = MagicMock()
        fake_redis.set = AsyncMock()
        with patch.object(redis_client, "get_redis", AsyncMock(return_value=fake_redis)):
            await redis_client.write_stats({"connected_clients": 2})

        fake_redis.set.assert_awaited_once_with(
            settings.REDIS_STATS_KEY, json.dumps({"connected_clients": 2}), ex=15
        )

    @pytest.mark.asyncio
    async def test_read_stats_handles_missing_and_bad_json(self):
        fake_redis = MagicMock()
        fake_redis.get = AsyncMock(side_effect=[None, "{not json", '{"vessels": 3}'])
        with patch.object(redis_client, "get_redis", AsyncMock(return_value=fake_redis)):
            assert await redis_client.read_stats() is None
            assert await redis_client.read_stats() is None
            assert await redis_client.read_stats() == {"vessels": 3}

    def test_enabled_follows_url(self, monkeypatch):
        monkeypatch.setattr(settings, "REDIS_URL", "")
        assert redis_client.redis_enabled() is False
        monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")
        assert redis_client.redis_enabled() is True


class TestReadinessWithRedis:
    @pytest.fixture
    def client(self, monkeypatch):
        monkeypatch.setattr(connector_module, "open_feed", FakeFeed())
        monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")
        monkeypatch.setattr(settings, "STATS_PUBLISH_INTERVAL_SEC", 3600.0)
        with TestClient(app) as test_client:
            yield test_client

    def test_ready_when_ping_succeeds(self, client):
        fake_redis = MagicMock()
        fake_redis.ping = AsyncMock(return_value=True)
        with patch("shiptracker.api.health.get_redis", AsyncMock(return_value=fake_redis)):
            resp = client.get("/health/ready")
        assert resp.status_code == 200

    def test_unready_when_ping_fails(self, client):
        fake_redis = MagicMock()
        fake_redis.ping = AsyncMock(side_effect=ConnectionError("refused"))
        with patch("shiptracker.api.health.get_redis", AsyncMock(return_value=fake_redis)):
            resp = client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json() == {"status": "unhealthy", "errors": ["redis"]}

    def test_mirror_endpoint_reads_snapshot(self, client):
        with patch(
            "shiptracker.api.router.read_stats",
            AsyncMock(return_value={"connected_clients": 4}),
        ):
            resp = client.get("/api/status/mirror")
        assert resp.status_code == 200
        assert resp.json() == {"connected_clients": 4}
