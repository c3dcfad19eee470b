"""Order schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from westroy.models.order import OrderStatus


class OrderStatusUpdate(BaseModel):
    """Schema for an order status transition."""

    status: OrderStatus

    model_config = {"extra": "forbid"}


class OrderResponse(BaseModel):
    """Schema for order response."""

    order_id: UUID
    offer_id: UUID
    request_id: UUID
    client_id: UUID
    company_id: UUID
    total_price: Decimal
    delivery_address: str | None
    status: str
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderListResponse(BaseModel):
    """Schema for order list response."""

    orders: list[OrderResponse]
    total: int
