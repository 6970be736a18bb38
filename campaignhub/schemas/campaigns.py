"""
Campaign, delivery receipt and vendor message schemas.
Receipt and vendor payloads use the vendor's camelCase field names on the wire.
"""
import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import AliasChoices, BaseModel, Field


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1)
    segment_id: str = Field(..., min_length=1)
    message_template: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("message_template", "custom_message"),
    )


class CampaignCreated(BaseModel):
    campaign_id: str
    name: str
    segment_id: str
    segment_name: str
    audience_size: int
    status: str
    message_template: str


class CampaignSummary(BaseModel):
    campaign_id: str
    name: str
    segment_name: str
    date: str
    audience_size: int
    sent: int
    failed: int
    pending: int
    status: str
    message_template: str


class CampaignStatusResponse(BaseModel):
    campaign_id: str
    name: str
    segment_name: str
    status: str
    total_audience: int
    sent: int
    failed: int
    pending: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    message_template: str


class CommunicationLogItem(BaseModel):
    id: str
    campaign_id: str
    customer_id: str
    customer_name: str
    customer_email: str
    message: str
    status: str
    vendor_message_id: Optional[str] = None
    delivery_timestamp: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CampaignLogsResponse(BaseModel):
    logs: list[CommunicationLogItem]
    pagination: Pagination


class DeliveryReceipt(BaseModel):
    """Internal receipt as queued by the aggregator."""
    message_id: uuid.UUID
    campaign_id: str
    status: Literal["SENT", "FAILED"]
    delivery_timestamp: datetime
    vendor_message_id: Optional[str] = None
    failure_reason: Optional[str] = None


class DeliveryReceiptPayload(BaseModel):
    """Vendor delivery receipt callback (POST /api/campaigns/delivery-receipt)."""
    messageId: uuid.UUID
    campaignId: str
    vendorMessageId: Optional[str] = None
    status: Literal["SENT", "FAILED"]
    failureReason: Optional[str] = None
    deliveryTimestamp: datetime

    def to_receipt(self) -> DeliveryReceipt:
        return DeliveryReceipt(
            message_id=self.messageId,
            campaign_id=self.campaignId,
            vendor_message_id=self.vendorMessageId,
            status=self.status,
            failure_reason=self.failureReason,
            delivery_timestamp=self.deliveryTimestamp,
        )


class VendorMessage(BaseModel):
    """Outbound send request to the delivery vendor."""
    messageId: str
    campaignId: str
    customerId: str
    customerEmail: str
    message: str
