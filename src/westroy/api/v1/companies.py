"""Company API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query

from westroy.api.deps import ReviewServiceDep
from westroy.schemas.review import CompanyReviewsResponse, ReviewResponse

router = APIRouter()


@router.get("/{company_id}/reviews", response_model=CompanyReviewsResponse)
async def get_company_reviews(
    company_id: UUID,
    service: ReviewServiceDep,
    limit: int = Query(50, ge=1, le=100),
):
    """Public: a company's newest reviews and its rating."""
    reviews, stats = await service.list_company_reviews(company_id, limit=limit)
    return CompanyReviewsResponse(
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
        stats=stats,
    )
