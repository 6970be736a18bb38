"""
Segment endpoints - preview an audience for a rule set, save it as a snapshot.
"""
import logging

from fastapi import APIRouter, Depends

from campaignhub.api.dependencies import get_store, to_http_error
from campaignhub.schemas.segments import (
    SegmentCreate,
    SegmentPreviewRequest,
    SegmentPreviewResponse,
    SegmentResponse,
)
from campaignhub.services import segments as segment_service
from campaignhub.services.record_store import RecordStore
from campaignhub.utils.errors import PipelineError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/segments", tags=["segments"])


@router.post("/preview", response_model=SegmentPreviewResponse)
async def preview_segment(
    payload: SegmentPreviewRequest,
    store: RecordStore = Depends(get_store),
):
    try:
        return await segment_service.preview_segment(store, payload.rules)
    except PipelineError as e:
        raise to_http_error(e)


@router.post("", status_code=201, response_model=SegmentResponse)
async def create_segment(
    payload: SegmentCreate,
    store: RecordStore = Depends(get_store),
):
    try:
        return await segment_service.save_segment(store, payload)
    except PipelineError as e:
        raise to_http_error(e)


@router.get("", response_model=list[SegmentResponse])
async def list_segments(store: RecordStore = Depends(get_store)):
    return await segment_service.list_segments(store)


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(segment_id: str, store: RecordStore = Depends(get_store)):
    try:
        return await segment_service.get_segment(store, segment_id)
    except PipelineError as e:
        raise to_http_error(e)
