"""
CampaignHub - customer ingestion, audience segmentation and campaign delivery.
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from campaignhub.config import get_settings
from campaignhub.api.router import api_router
from campaignhub.database import dispose_engine, get_session_factory, init_models
from campaignhub.services.campaigns import CampaignDispatcher
from campaignhub.services.delivery_receipts import DeliveryReceiptAggregator
from campaignhub.services.record_store import RecordStore
from campaignhub.services.stream_producer import StreamProducer
from campaignhub.services.vendor import build_vendor_gateway
from campaignhub.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from campaignhub.utils.redis import close_redis, get_redis
from campaignhub.workers.stream_consumer import build_ingestion_consumers

logger = logging.getLogger("campaignhub")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline services, start the background loops, stop them on exit."""
    settings = get_settings()
    logger.info("CampaignHub starting up (env=%s, vendor=%s)", settings.app_env, settings.vendor_mode)

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    # Store connection failure here is fatal
    await init_models()
    redis = await get_redis()

    store = RecordStore(get_session_factory())
    gateway = build_vendor_gateway(settings)
    aggregator = DeliveryReceiptAggregator(store, settings, redis=redis)
    dispatcher = CampaignDispatcher(store, gateway, settings)
    consumers = build_ingestion_consumers(redis, store, settings)

    app.state.store = store
    app.state.producer = StreamProducer(redis, settings)
    app.state.aggregator = aggregator
    app.state.dispatcher = dispatcher
    app.state.consumers = consumers

    for consumer in consumers:
        consumer.start()
    aggregator.start()
    logger.info("Started %d stream consumers and the receipt aggregator", len(consumers))

    yield

    logger.info("CampaignHub shutting down")
    for consumer in consumers:
        await consumer.stop()
    await dispatcher.shutdown()
    await aggregator.stop()
    await gateway.aclose()
    await close_redis()
    await dispose_engine()
    logger.info("CampaignHub shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level, settings.app_env)

    application = FastAPI(
        title="CampaignHub",
        description="Customer ingestion, segmentation and campaign delivery",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            settings.app_base_url,
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "campaignhub.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
