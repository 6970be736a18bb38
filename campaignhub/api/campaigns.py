"""
Campaign endpoints plus the vendor delivery-receipt callback.

The receipt route is declared before /{campaign_id} so it is never captured
as a campaign id.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from campaignhub.api.dependencies import get_aggregator, get_dispatcher, to_http_error
from campaignhub.schemas.campaigns import (
    CampaignCreate,
    CampaignCreated,
    CampaignLogsResponse,
    CampaignStatusResponse,
    CampaignSummary,
    DeliveryReceiptPayload,
)
from campaignhub.services.campaigns import CampaignDispatcher
from campaignhub.services.delivery_receipts import DeliveryReceiptAggregator
from campaignhub.utils.errors import PipelineError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


@router.post("/delivery-receipt", status_code=202)
async def delivery_receipt(
    payload: DeliveryReceiptPayload,
    aggregator: DeliveryReceiptAggregator = Depends(get_aggregator),
):
    """Vendor callback. Receipts are buffered and applied in batches."""
    try:
        aggregator.submit(payload.to_receipt())
    except PipelineError as e:
        raise to_http_error(e)
    return {"status": "accepted"}


@router.post("", status_code=201, response_model=CampaignCreated)
async def create_campaign(
    payload: CampaignCreate,
    dispatcher: CampaignDispatcher = Depends(get_dispatcher),
):
    try:
        return await dispatcher.create_campaign(
            payload.name, payload.segment_id, payload.message_template,
        )
    except PipelineError as e:
        raise to_http_error(e)


@router.get("", response_model=list[CampaignSummary])
async def list_campaigns(dispatcher: CampaignDispatcher = Depends(get_dispatcher)):
    return await dispatcher.list_campaigns()


@router.get("/{campaign_id}", response_model=CampaignStatusResponse)
async def get_campaign(
    campaign_id: str,
    dispatcher: CampaignDispatcher = Depends(get_dispatcher),
):
    try:
        return await dispatcher.get_campaign_status(campaign_id)
    except PipelineError as e:
        raise to_http_error(e)


@router.get("/{campaign_id}/logs", response_model=CampaignLogsResponse)
async def get_campaign_logs(
    campaign_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    status: Optional[str] = Query(default=None),
    dispatcher: CampaignDispatcher = Depends(get_dispatcher),
):
    try:
        return await dispatcher.list_campaign_logs(campaign_id, page=page, limit=limit, status=status)
    except PipelineError as e:
        raise to_http_error(e)
