"""
Tests for campaignhub/api/health.py - health check endpoints (liveness, readiness, deep).
"""
import pytest
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from campaignhub.api.health import (
    health_check,
    readiness_check,
    deep_health_check,
    _check_workers,
    WORKER_NAMES,
)


def _request(aggregator=None):
    state = SimpleNamespace()
    if aggregator is not None:
        state.aggregator = aggregator
    return SimpleNamespace(app=SimpleNamespace(state=state))


def _healthy_db():
    db = AsyncMock()
    db.execute = AsyncMock(return_value=MagicMock())
    return db


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == "1.0.0"
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


# ---------------------------------------------------------------------------
# GET /health/ready
# ---------------------------------------------------------------------------


class TestReadinessCheck:
    async def test_all_healthy_returns_ready(self):
        redis = AsyncMock()
        redis.ping = AsyncMock(return_value=True)

        with patch("campaignhub.api.health.get_redis", new_callable=AsyncMock, return_value=redis):
            result = await readiness_check(db=_healthy_db())

        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}

    async def test_db_failure_returns_degraded(self):
        db = AsyncMock()
        db.execute = AsyncMock(side_effect=Exception("connection refused"))
        redis = AsyncMock()

        with patch("campaignhub.api.health.get_redis", new_callable=AsyncMock, return_value=redis):
            result = await readiness_check(db=db)

        assert result["status"] == "degraded"
        assert result["checks"]["database"] is False

    async def test_redis_failure_returns_degraded(self):
        with patch(
            "campaignhub.api.health.get_redis",
            new_callable=AsyncMock,
            side_effect=Exception("redis down"),
        ):
            result = await readiness_check(db=_healthy_db())

        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False


# ---------------------------------------------------------------------------
# GET /health/deep
# ---------------------------------------------------------------------------


class TestDeepHealthCheck:
    async def test_healthy_with_fresh_heartbeats(self):
        redis = AsyncMock()
        redis.ping = AsyncMock(return_value=True)
        redis.get = AsyncMock(return_value="2025-06-01T00:00:00+00:00")
        aggregator = MagicMock(backlog=4)

        with patch("campaignhub.api.health.get_redis", new_callable=AsyncMock, return_value=redis):
            result = await deep_health_check(request=_request(aggregator), db=_healthy_db())

        assert result["status"] == "healthy"
        assert result["checks"]["receipts"] == {"healthy": True, "backlog": 4}
        assert set(result["checks"]["workers"]["workers"]) == set(WORKER_NAMES)

    async def test_missing_heartbeat_is_degraded(self):
        redis = AsyncMock()
        redis.ping = AsyncMock(return_value=True)
        redis.get = AsyncMock(return_value=None)

        with patch("campaignhub.api.health.get_redis", new_callable=AsyncMock, return_value=redis):
            result = await deep_health_check(request=_request(), db=_healthy_db())

        assert result["status"] == "degraded"
        assert "receipts" not in result["checks"]

    async def test_database_down_is_unhealthy(self):
        db = AsyncMock()
        db.execute = AsyncMock(side_effect=Exception("down"))
        redis = AsyncMock()
        redis.get = AsyncMock(return_value="ts")

        with patch("campaignhub.api.health.get_redis", new_callable=AsyncMock, return_value=redis):
            result = await deep_health_check(request=_request(), db=db)

        assert result["status"] == "unhealthy"


class TestCheckWorkers:
    async def test_reads_prefixed_keys(self):
        redis = AsyncMock()
        redis.get = AsyncMock(return_value="ts")

        with patch("campaignhub.api.health.get_redis", new_callable=AsyncMock, return_value=redis):
            result = await _check_workers()

        assert result["healthy"] is True
        keys = [c.args[0] for c in redis.get.call_args_list]
        assert "campaignhub:worker_health:customer_consumer" in keys

    async def test_redis_error_reported(self):
        with patch(
            "campaignhub.api.health.get_redis",
            new_callable=AsyncMock,
            side_effect=Exception("boom"),
        ):
            result = await _check_workers()
        assert result["healthy"] is False
