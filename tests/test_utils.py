"""
Tests for campaignhub/utils - structured logging, errors, Redis helpers, config.
"""
import json
import logging
import sys
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from campaignhub.config import Settings, get_settings
from campaignhub.utils.errors import (
    ConflictError,
    NotFoundError,
    PermanentProcessingError,
    PipelineError,
    TransientIOError,
    ValidationError,
)
from campaignhub.utils.logging import (
    StructuredJsonFormatter,
    configure_structured_logging,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from campaignhub.utils.redis import heartbeat


def _record(msg="hello", **extra):
    record = logging.LogRecord("campaignhub.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ---------------------------------------------------------------------------
# logging
# ---------------------------------------------------------------------------


class TestStructuredJsonFormatter:
    def test_single_line_json_with_correlation_id(self):
        set_correlation_id("corr-1")
        try:
            line = StructuredJsonFormatter().format(_record())
        finally:
            set_correlation_id(None)

        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["correlation_id"] == "corr-1"
        assert entry["logger"] == "campaignhub.test"
        assert datetime.fromisoformat(entry["ts"]).tzinfo is not None

    def test_extra_fields_included(self):
        line = StructuredJsonFormatter().format(
            _record(campaign_id="camp-1", stream="order_stream", unrelated="x"),
        )
        entry = json.loads(line)
        assert entry["campaign_id"] == "camp-1"
        assert entry["stream"] == "order_stream"
        assert "unrelated" not in entry

    def test_static_fields_on_every_line(self):
        formatter = StructuredJsonFormatter({"service": "campaignhub", "env": "test"})
        entry = json.loads(formatter.format(_record()))
        assert entry["service"] == "campaignhub"
        assert entry["env"] == "test"

    def test_exception_included(self):
        try:
            raise RuntimeError("store down")
        except RuntimeError:
            record = logging.LogRecord(
                "campaignhub.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert "RuntimeError: store down" in entry["exception"]

    def test_generate_correlation_id(self):
        cid = generate_correlation_id()
        assert len(cid) == 32
        assert cid != generate_correlation_id()

    def test_correlation_scope_restores_previous(self):
        set_correlation_id("outer")
        try:
            with correlation_scope("1700000000000-0"):
                assert get_correlation_id() == "1700000000000-0"
            assert get_correlation_id() == "outer"
        finally:
            set_correlation_id(None)

    def test_configure_installs_single_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_structured_logging("debug", app_env="test")
            assert len(root.handlers) == 1
            assert root.level == logging.DEBUG
            formatter = root.handlers[0].formatter
            assert isinstance(formatter, StructuredJsonFormatter)
            assert formatter.static_fields == {"service": "campaignhub", "env": "test"}
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_default_correlation_id_is_none(self):
        set_correlation_id(None)
        assert get_correlation_id() is None


# ---------------------------------------------------------------------------
# errors
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.parametrize("cls,status", [
        (ValidationError, 400),
        (NotFoundError, 404),
        (ConflictError, 409),
        (PermanentProcessingError, 422),
        (TransientIOError, 503),
    ])
    def test_status_codes(self, cls, status):
        error = cls("boom")
        assert isinstance(error, PipelineError)
        assert error.status_code == status
        assert error.message == "boom"
        assert str(error) == "boom"


# ---------------------------------------------------------------------------
# redis helpers
# ---------------------------------------------------------------------------


class TestHeartbeat:
    async def test_writes_prefixed_key_with_ttl(self, mock_redis):
        await heartbeat("order_consumer", ttl=60)

        key, _ = mock_redis.set.call_args[0]
        assert key == "campaignhub:worker_health:order_consumer"
        assert mock_redis.set.call_args[1]["ex"] == 60

    async def test_never_raises(self):
        redis = AsyncMock()
        redis.set = AsyncMock(side_effect=ConnectionError("down"))
        await heartbeat("customer_consumer", redis=redis)  # should not raise


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.customer_stream == "customer_stream"
        assert settings.customer_group == "customer_processors"
        assert settings.order_stream == "order_stream"
        assert settings.order_group == "order_processors"
        assert settings.stream_consumer_name == "worker-1"
        assert settings.stream_block_ms == 1000
        assert settings.stream_error_backoff_seconds == 5.0
        assert settings.receipt_batch_size == 10
        assert settings.receipt_flush_interval_seconds == 2.0
        assert settings.vendor_mode == "simulated"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_CONCURRENCY", "25")
        monkeypatch.setenv("STREAM_MAX_DELIVERIES", "0")
        settings = Settings(_env_file=None)
        assert settings.dispatch_concurrency == 25
        assert settings.stream_max_deliveries == 0

    def test_get_settings_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
