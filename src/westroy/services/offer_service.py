"""Offer service: producer bids and the accept/reject state machine.

Accepting an offer is the one multi-row write in the marketplace. In a
single transaction it

1. marks the offer `accepted`,
2. rejects every other `pending` offer on the same request,
3. moves the request to `in_progress`,
4. creates the order (total = price + delivery price).

The request and offer rows are locked first (`SELECT ... FOR UPDATE`), and
the unique constraints on `orders.offer_id` / `orders.request_id` turn a
lost race into an IntegrityError, so two concurrent acceptances can never
both commit.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from westroy.middleware.metrics import OFFER_DECISIONS
from westroy.models.offer import Offer, OfferStatus
from westroy.models.order import Order, OrderStatus
from westroy.models.request import Request, RequestStatus
from westroy.models.user import User, UserRole
from westroy.schemas.offer import OfferCreate
from westroy.services.company_service import CompanyService
from westroy.services.notification_triggers import (
    notify_client_of_offer,
    notify_producer_of_offer_status,
)
from westroy.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

DEFAULT_OFFER_VALIDITY = timedelta(days=7)


class OfferService:
    """Service class for offer operations."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.companies = CompanyService(db)

    async def create_offer(self, actor: User, payload: OfferCreate) -> Offer:
        """Submit an offer against an active request.

        Producers always bid as their own company; admins must name one.

        Raises:
            AuthorizationError: Clients, or producers without a company
            ValidationError: Admin without company_id
            NotFoundError: Request or company does not exist
            ConflictError: Request not active, or company already bid
        """
        if actor.is_admin:
            if payload.company_id is None:
                raise ValidationError("company_id is required when an admin submits an offer")
            company = await self.companies.get_company(payload.company_id)
        elif actor.role == UserRole.PRODUCER.value:
            company = await self.companies.get_owned_company(actor)
            if company is None:
                raise AuthorizationError("Producer has no company")
        else:
            raise AuthorizationError("Only producers can submit offers")

        request = await self.db.get(Request, payload.request_id)
        if request is None:
            raise NotFoundError("Request not found")
        if request.status != RequestStatus.ACTIVE.value:
            raise ConflictError(f"Request is {request.status}, offers are closed")

        existing = await self.db.execute(
            select(Offer.offer_id).where(
                Offer.request_id == request.request_id,
                Offer.company_id == company.company_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("This company has already submitted an offer for this request")

        offer = Offer(
            request_id=request.request_id,
            company_id=company.company_id,
            price=payload.price,
            price_unit=payload.price_unit,
            comment=payload.comment,
            delivery_included=payload.delivery_included,
            delivery_price=payload.delivery_price,
            valid_until=payload.valid_until or date.today() + DEFAULT_OFFER_VALIDITY,
            status=OfferStatus.PENDING.value,
        )

        try:
            self.db.add(offer)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("This company has already submitted an offer for this request")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create offer on request {payload.request_id}: {e}")
            raise DependencyError("Failed to create offer") from e
        await self.db.refresh(offer)

        logger.info(f"Offer {offer.offer_id} from {company.company_id} on request {request.request_id}")
        if self.dispatcher is not None:
            self.dispatcher.dispatch(notify_client_of_offer, offer.offer_id)
        return offer

    async def _get_offer_for_decision(self, offer_id: UUID, actor: User) -> tuple[Offer, Request]:
        """Load an offer and its request and check the actor may decide on it."""
        offer = await self.db.get(Offer, offer_id)
        if offer is None:
            raise NotFoundError("Offer not found")
        request = await self.db.get(Request, offer.request_id)
        if request is None:
            raise NotFoundError("Request not found")
        if request.user_id != actor.user_id and not actor.is_admin:
            raise AuthorizationError("Only the request owner or an admin can decide on offers")
        return offer, request

    async def accept_offer(self, offer_id: UUID, actor: User) -> tuple[Offer, Order]:
        """Accept an offer, reject its siblings and create the order.

        Returns:
            Tuple of (accepted offer, created order)

        Raises:
            NotFoundError: Offer does not exist
            AuthorizationError: Actor is neither request owner nor admin
            ConflictError: Offer not pending, request not active, or a
                concurrent acceptance won
            DependencyError: Database failure (everything rolled back)
        """
        offer, request = await self._get_offer_for_decision(offer_id, actor)
        request_id = request.request_id

        try:
            # Lock request then offer, in that order, for every acceptance.
            locked = await self.db.execute(
                select(Request)
                .where(Request.request_id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            request = locked.scalar_one()
            locked = await self.db.execute(
                select(Offer)
                .where(Offer.offer_id == offer_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            offer = locked.scalar_one()

            if offer.status != OfferStatus.PENDING.value:
                raise ConflictError(f"Offer is already {offer.status}")
            if request.status != RequestStatus.ACTIVE.value:
                raise ConflictError(f"Request is already {request.status}")

            offer.status = OfferStatus.ACCEPTED.value
            await self.db.execute(
                update(Offer)
                .where(
                    Offer.request_id == request.request_id,
                    Offer.offer_id != offer.offer_id,
                    Offer.status == OfferStatus.PENDING.value,
                )
                .values(status=OfferStatus.REJECTED.value)
                .execution_options(synchronize_session=False)
            )
            request.status = RequestStatus.IN_PROGRESS.value

            order = Order(
                offer_id=offer.offer_id,
                request_id=request.request_id,
                client_id=request.user_id,
                company_id=offer.company_id,
                total_price=offer.price + (offer.delivery_price or Decimal("0")),
                delivery_address=request.address,
                status=OrderStatus.CONFIRMED.value,
            )
            self.db.add(order)
            await self.db.commit()
        except ConflictError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.info(f"Concurrent acceptance lost on request {request_id}: {e}")
            raise ConflictError("Another offer was accepted for this request") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to accept offer {offer_id}: {e}")
            raise DependencyError("Failed to accept offer") from e

        await self.db.refresh(offer)
        await self.db.refresh(order)

        OFFER_DECISIONS.labels(decision="accepted").inc()
        logger.info(f"Offer {offer_id} accepted, order {order.order_id} created")

        if self.dispatcher is not None:
            self.dispatcher.dispatch(notify_producer_of_offer_status, offer.offer_id)
        return offer, order

    async def reject_offer(self, offer_id: UUID, actor: User) -> Offer:
        """Reject a pending offer. No other rows change."""
        offer, _ = await self._get_offer_for_decision(offer_id, actor)
        if offer.status != OfferStatus.PENDING.value:
            raise ConflictError(f"Offer is already {offer.status}")

        try:
            result = await self.db.execute(
                update(Offer)
                .where(Offer.offer_id == offer_id, Offer.status == OfferStatus.PENDING.value)
                .values(status=OfferStatus.REJECTED.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise ConflictError("Offer was decided concurrently")
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to reject offer {offer_id}: {e}")
            raise DependencyError("Failed to reject offer") from e
        await self.db.refresh(offer)

        OFFER_DECISIONS.labels(decision="rejected").inc()
        logger.info(f"Offer {offer_id} rejected")

        if self.dispatcher is not None:
            self.dispatcher.dispatch(notify_producer_of_offer_status, offer.offer_id)
        return offer

    async def list_offers(
        self,
        actor: User,
        request_id: UUID | None = None,
        company_id: UUID | None = None,
    ) -> list[Offer]:
        """List offers, newest first.

        - by request: the request owner, any producer's own offers, or admin
        - by company: that company's owner or admin
        - neither: admin sees all, producers their company's, clients the
          offers on their own requests
        """
        query = select(Offer)

        if request_id is not None:
            request = await self.db.get(Request, request_id)
            if request is None:
                raise NotFoundError("Request not found")
            query = query.where(Offer.request_id == request_id)
            if not actor.is_admin and request.user_id != actor.user_id:
                if actor.role != UserRole.PRODUCER.value:
                    raise AuthorizationError("You can only view offers on your own requests")
                own = await self.companies.get_owned_company(actor)
                if own is None:
                    raise AuthorizationError("Producer has no company")
                query = query.where(Offer.company_id == own.company_id)

        if company_id is not None:
            await self.companies.get_company(company_id)
            if not actor.is_admin:
                own = await self.companies.get_owned_company(actor)
                if own is None or own.company_id != company_id:
                    raise AuthorizationError("You can only view your own company's offers")
            query = query.where(Offer.company_id == company_id)

        if request_id is None and company_id is None and not actor.is_admin:
            if actor.role == UserRole.PRODUCER.value:
                own = await self.companies.get_owned_company(actor)
                if own is None:
                    return []
                query = query.where(Offer.company_id == own.company_id)
            else:
                query = query.join(Request, Request.request_id == Offer.request_id).where(
                    Request.user_id == actor.user_id
                )

        result = await self.db.execute(query.order_by(Offer.created_at.desc(), Offer.offer_id))
        return list(result.scalars().all())

