"""
Ingestion request schemas - validated before anything touches a stream.
Serialized with model_dump_json() so dates travel as ISO-8601 strings.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CustomerCreate(BaseModel):
    """Customer creation request (POST /api/customers, CREATE_CUSTOMER messages)."""
    customer_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    registration_date: datetime
    city: Optional[str] = None


class OrderItem(BaseModel):
    sku: str
    name: str
    quantity: int = Field(..., gt=0)
    price: float = Field(..., ge=0)


class OrderCreate(BaseModel):
    """Order creation request (POST /api/orders, CREATE_ORDER messages)."""
    order_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)
    items: list[OrderItem] = Field(default_factory=list)
    order_date: datetime
    status: str = "pending"


class IngestionAccepted(BaseModel):
    """202 response: the record is queued, not yet persisted."""
    status: str = "queued"
    message_id: str
    stream: str


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    customer_id: str
    name: str
    email: str
    phone: str
    city: Optional[str] = None
    registration_date: datetime
    total_spent: float
    total_orders: int
    last_order_date: Optional[datetime] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    customer_id: str
    amount: float
    items: list[dict] = Field(default_factory=list)
    order_date: datetime
    status: str
