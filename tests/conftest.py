"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and the vendor.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

import campaignhub.models  # noqa: F401 - registers every table on Base.metadata
from campaignhub.config import Settings
from campaignhub.database import Base
from campaignhub.services.record_store import RecordStore


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def session_factory():
    """In-memory SQLite database shared by every session of one test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def settings():
    """Settings with fast timings and no .env lookup."""
    return Settings(
        _env_file=None,
        app_env="test",
        stream_block_ms=10,
        stream_error_backoff_seconds=0.01,
        dispatch_interval_ms=0,
        dispatch_jitter_ms=0,
        dispatch_concurrency=3,
        receipt_batch_size=10,
        receipt_flush_interval_seconds=0.01,
        receipt_queue_maxsize=100,
        receipt_callback_url="http://testserver/api/campaigns/delivery-receipt",
    )


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("campaignhub.utils.redis.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.xadd = AsyncMock(return_value="1700000000000-0")
        redis_mock.xack = AsyncMock(return_value=1)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def customer_values():
    """Factory for Customer column values."""
    def _make(customer_id: str = "CUST-001", **overrides):
        values = {
            "customer_id": customer_id,
            "name": "Priya Sharma",
            "email": f"{customer_id.lower()}@example.com",
            "phone": "+919876543210",
            "city": "Mumbai",
            "registration_date": datetime(2024, 1, 15, tzinfo=timezone.utc),
            "total_spent": 0.0,
            "total_orders": 0,
        }
        values.update(overrides)
        return values
    return _make
