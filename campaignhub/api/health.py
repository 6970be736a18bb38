"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis)
- GET /health/deep  - deep check (DB + Redis + worker heartbeats + receipt backlog)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from campaignhub.database import get_db
from campaignhub.utils.redis import HEARTBEAT_KEY_PREFIX, get_redis

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"

WORKER_NAMES = (
    "customer_consumer",
    "order_consumer",
    "delivery_receipt_aggregator",
)


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """Readiness check - verifies database and Redis connectivity."""
    checks = {
        "database": (await _check_database(db))["healthy"],
        "redis": (await _check_redis())["healthy"],
    }
    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Deep health check - checks ALL dependencies.

    Checks:
    - PostgreSQL: SELECT 1
    - Redis: PING
    - Workers: heartbeat freshness
    - Receipt aggregator: buffered receipt count
    """
    now = datetime.now(timezone.utc)
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "workers": await _check_workers(),
    }

    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is not None:
        checks["receipts"] = {"healthy": True, "backlog": aggregator.backlog}

    critical = ["database", "redis"]
    critical_healthy = all(checks.get(k, {}).get("healthy", False) for k in critical)
    all_healthy = all(c.get("healthy", False) for c in checks.values())

    if all_healthy:
        status = "healthy"
    elif critical_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "timestamp": now.isoformat(),
        "version": VERSION,
    }


async def _check_database(db: AsyncSession) -> dict:
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Health: database check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    try:
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Health: Redis check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_workers() -> dict:
    """Check worker heartbeat timestamps in Redis."""
    try:
        redis = await get_redis()
        workers = {}
        for name in WORKER_NAMES:
            heartbeat = await redis.get(f"{HEARTBEAT_KEY_PREFIX}{name}")
            workers[name] = {
                "healthy": heartbeat is not None,
                "last_heartbeat": heartbeat,
            }
        all_healthy = all(w["healthy"] for w in workers.values())
        return {"healthy": all_healthy, "workers": workers}
    except Exception as e:
        logger.warning("Health: worker heartbeat check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}
