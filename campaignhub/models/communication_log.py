"""
CommunicationLog model - one delivery attempt per (campaign, recipient).
Created PENDING in bulk when the campaign starts; moved to SENT or FAILED
once by the receipt aggregator. The row id doubles as the vendor messageId.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from campaignhub.database import Base

LOG_PENDING = "PENDING"
LOG_SENT = "SENT"
LOG_FAILED = "FAILED"


class CommunicationLog(Base):
    __tablename__ = "communication_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    campaign_id: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)

    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=LOG_PENDING, nullable=False
    )  # PENDING, SENT, FAILED

    vendor_message_id: Mapped[Optional[str]] = mapped_column(String(100))
    delivery_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_communication_logs_campaign_status", "campaign_id", "status"),
        Index("ix_communication_logs_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CommunicationLog {self.campaign_id}/{self.customer_id} ({self.status})>"
