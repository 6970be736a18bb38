"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    app_base_url: str = "http://localhost:8080"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/campaignhub"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Ingestion streams
    customer_stream: str = "customer_stream"
    customer_group: str = "customer_processors"
    order_stream: str = "order_stream"
    order_group: str = "order_processors"
    stream_consumer_name: str = "worker-1"
    stream_read_count: int = 1
    stream_block_ms: int = 1000
    stream_error_backoff_seconds: float = 5.0
    stream_reclaim_idle_ms: int = 60000
    stream_max_deliveries: int = 5  # 0 = never dead-letter, pending messages wait forever

    # Campaign dispatch
    dispatch_interval_ms: int = 500
    dispatch_jitter_ms: int = 1000
    dispatch_concurrency: int = 10

    # Delivery receipts
    receipt_batch_size: int = 10
    receipt_flush_interval_seconds: float = 2.0
    receipt_queue_maxsize: int = 10000

    # Vendor
    vendor_mode: str = "simulated"  # simulated, http
    vendor_api_url: str = ""
    vendor_timeout_seconds: float = 10.0
    vendor_success_rate: float = 0.9
    receipt_callback_url: str = "http://localhost:8080/api/campaigns/delivery-receipt"
    receipt_fallback_timeout_seconds: float = 5.0

    # Sentry
    sentry_dsn: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
