"""Order API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query

from westroy.api.deps import CurrentUser, OrderServiceDep, ReviewServiceDep
from westroy.schemas.order import OrderListResponse, OrderResponse, OrderStatusUpdate
from westroy.schemas.review import ReviewCreate, ReviewResponse

router = APIRouter()


@router.get("", response_model=OrderListResponse)
async def get_my_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get the caller's orders (as client, as producer, or all for admins)."""
    orders = await service.list_orders(current_user, skip=skip, limit=limit)
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=len(orders),
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: UUID, current_user: CurrentUser, service: OrderServiceDep):
    """Get a single order (participants only)."""
    return await service.get_order(order_id, current_user)


@router.patch("/{order_id}", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    update: OrderStatusUpdate,
    current_user: CurrentUser,
    service: OrderServiceDep,
):
    """Move an order along its lifecycle.

    Raises:
        400: Transition not allowed from the current status
        403: Caller may not make this transition
        409: Status changed concurrently
    """
    return await service.update_status(order_id, current_user, update.status)


@router.post("/{order_id}/reviews", response_model=ReviewResponse)
async def create_review(
    order_id: UUID,
    review_data: ReviewCreate,
    current_user: CurrentUser,
    service: ReviewServiceDep,
):
    """Review a completed order (one review per order)."""
    return await service.create_review(
        order_id, current_user, review_data.rating, review_data.comment
    )
