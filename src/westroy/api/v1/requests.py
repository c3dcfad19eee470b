"""Buyer request API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from westroy.api.deps import CurrentUser, RequestServiceDep
from westroy.schemas.request import (
    RequestCreate,
    RequestListItem,
    RequestListResponse,
    RequestResponse,
    RequestStatusUpdate,
)

router = APIRouter()


@router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    request_data: RequestCreate,
    current_user: CurrentUser,
    service: RequestServiceDep,
):
    """Create a purchase request.

    Producers serving the category are notified in the background; the
    response does not wait for delivery.
    """
    return await service.create_request(current_user, request_data)


@router.get("", response_model=RequestListResponse)
async def list_requests(
    current_user: CurrentUser,
    service: RequestServiceDep,
    user_id: UUID | None = None,
    category_id: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """List requests visible to the caller, newest first."""
    rows, total = await service.list_requests(
        current_user,
        user_id=user_id,
        category_id=category_id,
        skip=skip,
        limit=limit,
    )
    return RequestListResponse(
        requests=[
            RequestListItem.model_validate(request).model_copy(update={"offer_count": offer_count})
            for request, offer_count in rows
        ],
        total=total,
    )


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(request_id: UUID, current_user: CurrentUser, service: RequestServiceDep):
    """Get a single request."""
    return await service.get_request(request_id, current_user)


@router.put("/{request_id}", response_model=RequestResponse)
async def update_request_status(
    request_id: UUID,
    update: RequestStatusUpdate,
    current_user: CurrentUser,
    service: RequestServiceDep,
):
    """Change a request's status (owner or admin)."""
    return await service.update_request_status(request_id, current_user, update.status)
