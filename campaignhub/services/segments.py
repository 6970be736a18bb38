"""
Segment preview and save.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from campaignhub.models.customer import Customer
from campaignhub.models.segment import Segment
from campaignhub.schemas.segments import (
    Demographics,
    Rule,
    SegmentCreate,
    SegmentPreviewResponse,
    SegmentResponse,
)
from campaignhub.services.record_store import RecordStore
from campaignhub.services.rule_engine import compile_rules
from campaignhub.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

SPENDING_TIERS = (
    ("Low (0-5K)", 5000),
    ("Medium (5K-20K)", 20000),
    ("High (20K+)", None),
)

RECENCY_BUCKETS = (
    ("Active (0-30 days)", 30),
    ("Inactive (30-90 days)", 90),
    ("Dormant (90+ days)", None),
)


def _bucket(value: float, buckets) -> str:
    for label, upper in buckets:
        if upper is None or value <= upper:
            return label
    return buckets[-1][0]


def build_demographics(customers: Sequence[Customer], now: Optional[datetime] = None) -> Demographics:
    """
    City counts, spending tiers and order recency for a set of customers.
    Customers without a city or without any order are left out of those breakdowns.
    """
    now = now or datetime.now(timezone.utc)
    by_city: dict[str, int] = {}
    by_tier = {label: 0 for label, _ in SPENDING_TIERS}
    by_recency = {label: 0 for label, _ in RECENCY_BUCKETS}

    for customer in customers:
        if customer.city:
            by_city[customer.city] = by_city.get(customer.city, 0) + 1

        by_tier[_bucket(customer.total_spent or 0, SPENDING_TIERS)] += 1

        last_order = customer.last_order_date
        if last_order:
            if last_order.tzinfo is None:
                last_order = last_order.replace(tzinfo=timezone.utc)
            days = (now - last_order).days
            by_recency[_bucket(days, RECENCY_BUCKETS)] += 1

    return Demographics(by_city=by_city, by_spending_tier=by_tier, by_recency=by_recency)


async def preview_segment(store: RecordStore, rules: list[Rule]) -> SegmentPreviewResponse:
    customers = await store.find_customers(compile_rules(rules))
    return SegmentPreviewResponse(
        count=len(customers),
        demographics=build_demographics(customers),
    )


def _to_response(segment: Segment) -> SegmentResponse:
    return SegmentResponse(
        segment_id=segment.segment_id,
        name=segment.name,
        description=segment.description,
        rules=segment.rules or [],
        audience_size=segment.audience_size or 0,
    )


async def save_segment(store: RecordStore, data: SegmentCreate) -> SegmentResponse:
    """
    Count the audience now and store an immutable snapshot.
    Raises ConflictError if the segment_id is taken.
    """
    audience_size = await store.count_customers(compile_rules(data.rules))
    segment = await store.insert_segment({
        "segment_id": data.segment_id or str(uuid.uuid4()),
        "name": data.name,
        "description": data.description,
        "rules": [rule.model_dump(mode="json") for rule in data.rules],
        "audience_size": audience_size,
        "created_by": data.created_by,
    })
    logger.info("Segment %s saved: %d customers", segment.segment_id, audience_size)
    return _to_response(segment)


async def get_segment(store: RecordStore, segment_id: str) -> SegmentResponse:
    segment = await store.get_segment(segment_id)
    if not segment:
        raise NotFoundError("Segment not found")
    return _to_response(segment)


async def list_segments(store: RecordStore) -> list[SegmentResponse]:
    return [_to_response(s) for s in await store.list_segments()]
