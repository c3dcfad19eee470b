"""Offer API endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from westroy.api.deps import CurrentUser, OfferServiceDep
from westroy.schemas.offer import OfferCreate, OfferListResponse, OfferResponse, OfferStatusUpdate

router = APIRouter()


@router.post("", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    offer_data: OfferCreate,
    current_user: CurrentUser,
    service: OfferServiceDep,
):
    """Submit an offer on an active request (one per company)."""
    return await service.create_offer(current_user, offer_data)


@router.get("", response_model=OfferListResponse)
async def list_offers(
    current_user: CurrentUser,
    service: OfferServiceDep,
    request_id: UUID | None = None,
    company_id: UUID | None = None,
):
    """List offers by request or company."""
    offers = await service.list_offers(current_user, request_id=request_id, company_id=company_id)
    return OfferListResponse(
        offers=[OfferResponse.model_validate(o) for o in offers],
        total=len(offers),
    )


@router.put("/{offer_id}", response_model=OfferResponse)
async def decide_offer(
    offer_id: UUID,
    decision: OfferStatusUpdate,
    current_user: CurrentUser,
    service: OfferServiceDep,
):
    """Accept or reject an offer.

    Accepting creates the order in the same transaction; its id is returned
    as `order_id`.
    """
    if decision.status == "accepted":
        offer, order = await service.accept_offer(offer_id, current_user)
        return OfferResponse.model_validate(offer).model_copy(update={"order_id": order.order_id})

    offer = await service.reject_offer(offer_id, current_user)
    return OfferResponse.model_validate(offer)
