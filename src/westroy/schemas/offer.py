"""Offer schemas for request/response validation."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class OfferCreate(BaseModel):
    """Schema for offer submission.

    `company_id` is only honoured for admins; producers always bid as their
    own company.
    """

    request_id: UUID
    company_id: UUID | None = None
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    price_unit: str = Field("за м³", min_length=1, max_length=50)
    comment: str = Field("", max_length=2000)
    delivery_included: bool = False
    delivery_price: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    valid_until: date | None = None

    model_config = {"extra": "forbid"}


class OfferStatusUpdate(BaseModel):
    """Schema for accepting or rejecting an offer."""

    status: Literal["accepted", "rejected"]

    model_config = {"extra": "forbid"}


class OfferResponse(BaseModel):
    """Schema for offer response."""

    offer_id: UUID
    request_id: UUID
    company_id: UUID
    price: Decimal
    price_unit: str
    comment: str
    delivery_included: bool
    delivery_price: Decimal | None
    valid_until: date | None
    status: str
    created_at: datetime
    order_id: UUID | None = None  # set when this call created an order

    model_config = {"from_attributes": True}


class OfferListResponse(BaseModel):
    """Schema for offer list response."""

    offers: list[OfferResponse]
    total: int
