"""
Segment rule and preview schemas.
"""
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

RuleField = Literal["total_spent", "last_order_date", "total_orders", "city", "registration_date"]


class Rule(BaseModel):
    """
    One segment condition. `logic` decides how the NEXT rule joins the
    group this rule closes; the last rule's logic is ignored.
    """
    id: str
    field: RuleField
    operator: str  # open string: unknown operators compile to match-all
    value: Any
    logic: Optional[Literal["AND", "OR"]] = None


class SegmentPreviewRequest(BaseModel):
    rules: list[Rule] = Field(default_factory=list)


class SegmentCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    rules: list[Rule] = Field(default_factory=list)
    segment_id: Optional[str] = None
    created_by: Optional[str] = None


class Demographics(BaseModel):
    by_city: dict[str, int]
    by_spending_tier: dict[str, int]
    by_recency: dict[str, int]


class SegmentPreviewResponse(BaseModel):
    count: int
    demographics: Demographics


class SegmentResponse(BaseModel):
    segment_id: str
    name: str
    description: Optional[str] = None
    rules: list[Rule]
    audience_size: int
