"""Request service: buyer purchase requests and their status."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from westroy.middleware.metrics import REQUESTS_CREATED
from westroy.models.category import Category
from westroy.models.offer import Offer
from westroy.models.request import TERMINAL_REQUEST_STATUSES, Request, RequestStatus
from westroy.models.user import User, UserRole
from westroy.schemas.request import RequestCreate
from westroy.services.notification_triggers import notify_producers_of_request
from westroy.services.notifications import NotificationDispatcher
from westroy.services.query_parser import DEFAULT_CITY, parse_query_rules

logger = logging.getLogger(__name__)

REQUEST_STATUSES = frozenset(s.value for s in RequestStatus)


class RequestService:
    """Service class for request operations."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher

    async def create_request(self, user: User, payload: RequestCreate) -> Request:
        """Persist a new active request and fan out to producers.

        Parsed fields the client did not send are filled by the rules parser.

        Raises:
            ValidationError: Unknown category
            DependencyError: Database failure
        """
        user_id = user.user_id
        category = await self.db.get(Category, payload.category_id)
        if category is None:
            raise ValidationError(f"Unknown category '{payload.category_id}'")

        parsed_category = payload.parsed_category
        parsed_volume = payload.parsed_volume
        parsed_city = payload.parsed_city
        if not (parsed_category and parsed_volume and parsed_city):
            parsed = parse_query_rules(payload.query)
            parsed_category = parsed_category or parsed.category or category.name_ru
            if not parsed_volume and parsed.volume:
                parsed_volume = f"{parsed.volume} {parsed.unit}" if parsed.unit else parsed.volume
            parsed_city = parsed_city or parsed.city or DEFAULT_CITY

        request = Request(
            user_id=user_id,
            category_id=category.category_id,
            query=payload.query,
            parsed_category=parsed_category,
            parsed_volume=parsed_volume,
            parsed_city=parsed_city,
            delivery_needed=payload.delivery_needed,
            address=payload.address,
            deadline=payload.deadline,
            status=RequestStatus.ACTIVE.value,
        )

        try:
            self.db.add(request)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create request for user {user_id}: {e}")
            raise DependencyError("Failed to create request") from e
        await self.db.refresh(request)

        REQUESTS_CREATED.labels(category=request.category_id).inc()
        logger.info(f"Request {request.request_id} created in {request.category_id} by {user.user_id}")

        if self.dispatcher is not None:
            self.dispatcher.dispatch(notify_producers_of_request, request.request_id)

        return request

    async def get_request(self, request_id: UUID, actor: User) -> Request:
        """Get a request; clients may only see their own."""
        request = await self.db.get(Request, request_id)
        if request is None:
            raise NotFoundError("Request not found")
        if actor.role == UserRole.CLIENT.value and request.user_id != actor.user_id:
            raise AuthorizationError("You can only view your own requests")
        return request

    async def update_request_status(self, request_id: UUID, actor: User, new_status: str) -> Request:
        """Change a request's status (owner or admin only).

        Raises:
            ValidationError: Unknown status value
            NotFoundError: Request does not exist
            AuthorizationError: Actor is neither owner nor admin
            ConflictError: Request is already completed or cancelled
            InvalidStateError: Reopening a request that already has an order
        """
        new_status = getattr(new_status, "value", new_status)
        if new_status not in REQUEST_STATUSES:
            raise ValidationError(
                f"Invalid status '{new_status}'. Allowed: {', '.join(sorted(REQUEST_STATUSES))}"
            )

        request = await self.db.get(Request, request_id)
        if request is None:
            raise NotFoundError("Request not found")
        if request.user_id != actor.user_id and not actor.is_admin:
            raise AuthorizationError("Only the request owner or an admin can change its status")
        if request.status in TERMINAL_REQUEST_STATUSES:
            raise ConflictError(f"Request is already {request.status}")
        # An accepted offer owns the request's single order slot.
        if request.status == RequestStatus.IN_PROGRESS.value and new_status == RequestStatus.ACTIVE.value:
            raise InvalidStateError("Cannot reopen a request that already has an order")

        old_status = request.status
        request.status = new_status
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to update request {request_id}: {e}")
            raise DependencyError("Failed to update request") from e
        await self.db.refresh(request)

        logger.info(f"Request {request_id} {old_status} -> {new_status} by {actor.user_id}")
        return request

    async def list_requests(
        self,
        actor: User,
        user_id: UUID | None = None,
        category_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[tuple[Request, int]], int]:
        """List requests visible to the actor, newest first.

        Admins see everything (optionally one user's), producers see all
        requests, clients only their own.

        Returns:
            Tuple of ([(request, offer_count)], total count)
        """
        filters = []
        if actor.role == UserRole.CLIENT.value:
            filters.append(Request.user_id == actor.user_id)
        elif user_id is not None:
            filters.append(Request.user_id == user_id)
        if category_id:
            filters.append(Request.category_id == category_id)

        count_result = await self.db.execute(
            select(func.count(Request.request_id)).where(*filters)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(Request, func.count(Offer.offer_id))
            .outerjoin(Offer, Offer.request_id == Request.request_id)
            .where(*filters)
            .group_by(Request.request_id)
            .order_by(Request.created_at.desc(), Request.request_id)
            .offset(skip)
            .limit(limit)
        )
        rows = [(request, offer_count) for request, offer_count in result.all()]

        return rows, total
