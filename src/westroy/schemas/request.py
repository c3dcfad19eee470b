"""Buyer request schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from westroy.models.request import RequestStatus


class RequestCreate(BaseModel):
    """Schema for request creation.

    `parsed_*` fields are optional; whatever the client leaves out is filled
    in by the rules parser from `query`.
    """

    category_id: str = Field(..., min_length=1, max_length=64)
    query: str = Field(..., min_length=1, max_length=2000)
    delivery_needed: bool
    parsed_category: str | None = Field(None, max_length=200)
    parsed_volume: str | None = Field(None, max_length=100)
    parsed_city: str | None = Field(None, max_length=100)
    address: str | None = Field(None, max_length=500)
    deadline: str | None = Field(None, max_length=50)

    model_config = {"extra": "forbid"}

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class RequestStatusUpdate(BaseModel):
    """Schema for request status change."""

    status: RequestStatus

    model_config = {"extra": "forbid"}


class RequestResponse(BaseModel):
    """Schema for request response."""

    request_id: UUID
    user_id: UUID
    category_id: str
    query: str
    parsed_category: str
    parsed_volume: str | None
    parsed_city: str
    delivery_needed: bool
    address: str | None
    deadline: str | None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RequestListItem(RequestResponse):
    """Request row in a listing, with the number of offers received."""

    offer_count: int = 0


class RequestListResponse(BaseModel):
    """Schema for request list response."""

    requests: list[RequestListItem]
    total: int
