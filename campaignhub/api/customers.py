"""
Customer ingestion endpoints.
POST only validates and queues; the stream consumer persists.
"""
import logging

from fastapi import APIRouter, Depends, Query

from campaignhub.api.dependencies import get_producer, get_store, to_http_error
from campaignhub.schemas.ingestion import CustomerCreate, CustomerResponse, IngestionAccepted
from campaignhub.services.record_store import RecordStore
from campaignhub.services.stream_producer import StreamProducer
from campaignhub.utils.errors import PipelineError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.post("", status_code=202, response_model=IngestionAccepted)
async def create_customer(
    payload: CustomerCreate,
    producer: StreamProducer = Depends(get_producer),
):
    try:
        message_id = await producer.publish_customer(payload)
    except PipelineError as e:
        raise to_http_error(e)
    return IngestionAccepted(message_id=message_id, stream=producer.customer_stream)


@router.get("", response_model=list[CustomerResponse])
async def list_customers(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    store: RecordStore = Depends(get_store),
):
    customers = await store.list_customers(offset=(page - 1) * limit, limit=limit)
    return [CustomerResponse.model_validate(c) for c in customers]
