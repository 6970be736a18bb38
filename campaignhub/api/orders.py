"""
Order ingestion endpoints.
"""
import logging

from fastapi import APIRouter, Depends, Query

from campaignhub.api.dependencies import get_producer, get_store, to_http_error
from campaignhub.schemas.ingestion import IngestionAccepted, OrderCreate, OrderResponse
from campaignhub.services.record_store import RecordStore
from campaignhub.services.stream_producer import StreamProducer
from campaignhub.utils.errors import PipelineError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=202, response_model=IngestionAccepted)
async def create_order(
    payload: OrderCreate,
    producer: StreamProducer = Depends(get_producer),
):
    try:
        message_id = await producer.publish_order(payload)
    except PipelineError as e:
        raise to_http_error(e)
    return IngestionAccepted(message_id=message_id, stream=producer.order_stream)


@router.get("", response_model=list[OrderResponse])
async def list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    store: RecordStore = Depends(get_store),
):
    orders = await store.list_orders(offset=(page - 1) * limit, limit=limit)
    return [OrderResponse.model_validate(o) for o in orders]
