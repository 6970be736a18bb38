"""
Order model. customer_id references Customer.customer_id by external id
but is deliberately not a foreign key: orders may arrive before their customer.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Float, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from campaignhub.database import Base


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    items: Mapped[Optional[list]] = mapped_column(
        JSONB, default=list
    )  # [{"sku": "...", "name": "...", "quantity": 1, "price": 10.0}]
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_orders_customer_id", "customer_id"),
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_id} ({self.amount})>"
