"""
Request dependencies - the pipeline services live on app.state, built once in
the application lifespan.
"""
from fastapi import HTTPException, Request

from campaignhub.services.campaigns import CampaignDispatcher
from campaignhub.services.delivery_receipts import DeliveryReceiptAggregator
from campaignhub.services.record_store import RecordStore
from campaignhub.services.stream_producer import StreamProducer
from campaignhub.utils.errors import PipelineError


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_producer(request: Request) -> StreamProducer:
    return request.app.state.producer


def get_dispatcher(request: Request) -> CampaignDispatcher:
    return request.app.state.dispatcher


def get_aggregator(request: Request) -> DeliveryReceiptAggregator:
    return request.app.state.aggregator


def to_http_error(error: PipelineError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)
