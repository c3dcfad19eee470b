"""Review schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ReviewCreate(BaseModel):
    """Schema for review creation request."""

    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)

    model_config = {"extra": "forbid"}


class ReviewResponse(BaseModel):
    """Schema for review response."""

    review_id: UUID
    order_id: UUID
    client_id: UUID
    company_id: UUID
    rating: int
    comment: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CompanyRating(BaseModel):
    """Aggregate rating recomputed from all of a company's reviews."""

    count: int = 0
    avg_rating: float | None = None


class CompanyReviewsResponse(BaseModel):
    """Schema for a company's review listing."""

    reviews: list[ReviewResponse]
    stats: CompanyRating
