"""
Structured JSON logging for the API and the pipeline workers.

One JSON object per line. Besides level, logger and message, each line carries
the correlation id of the unit of work being processed and, when the caller
passes them via `extra`, the pipeline identifiers in PIPELINE_FIELDS.

Correlation ids:
- HTTP requests take X-Correlation-ID or get a fresh one (middleware)
- stream consumers use the stream message id
- campaign dispatch uses the campaign id
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

PIPELINE_FIELDS = ("campaign_id", "customer_id", "order_id", "message_id", "stream", "error_code")
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: Optional[str]) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def correlation_scope(cid: Optional[str]) -> Iterator[None]:
    """Bind `cid` for the duration of the block, restoring the previous id after."""
    token = correlation_id_ctx.set(cid)
    try:
        yield
    finally:
        correlation_id_ctx.reset(token)


class StructuredJsonFormatter(logging.Formatter):
    """
    {"ts": "...", "level": "INFO", "logger": "...", "correlation_id": "...",
     "message": "...", "service": "campaignhub", "env": "production", ...}
    """

    def __init__(self, static_fields: Optional[dict] = None):
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": get_correlation_id(),
            "message": record.getMessage(),
        }
        entry.update(self.static_fields)

        for key in PIPELINE_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO", app_env: Optional[str] = None) -> None:
    """Route every logger through one JSON stdout handler. Call once at startup."""
    static_fields = {"service": "campaignhub"}
    if app_env:
        static_fields["env"] = app_env

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter(static_fields))

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
