"""Order service: the delivery state machine and order queries."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    InvalidStateError,
    NotFoundError,
)
from westroy.middleware.metrics import ORDER_STATUS_CHANGES
from westroy.models.base import utcnow
from westroy.models.order import Order, OrderStatus
from westroy.models.request import Request, RequestStatus
from westroy.models.user import User, UserRole
from westroy.services.company_service import CompanyService
from westroy.services.notification_triggers import notify_order_transition
from westroy.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

CLIENT = UserRole.CLIENT.value
PRODUCER = UserRole.PRODUCER.value
ADMIN = UserRole.ADMIN.value

# from-status -> {to-status: roles allowed to make that move}.
# Anything not listed is illegal; completed and cancelled are terminal.
ORDER_TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    OrderStatus.CONFIRMED.value: {
        OrderStatus.DELIVERING.value: frozenset({PRODUCER, ADMIN}),
        OrderStatus.CANCELLED.value: frozenset({CLIENT, PRODUCER, ADMIN}),
    },
    OrderStatus.DELIVERING.value: {
        OrderStatus.DELIVERED.value: frozenset({PRODUCER, ADMIN}),
        OrderStatus.CANCELLED.value: frozenset({PRODUCER, ADMIN}),
    },
    OrderStatus.DELIVERED.value: {
        OrderStatus.COMPLETED.value: frozenset({CLIENT, ADMIN}),
    },
    OrderStatus.COMPLETED.value: {},
    OrderStatus.CANCELLED.value: {},
}


def allowed_roles(from_status: str, to_status: str) -> frozenset[str] | None:
    """Roles permitted to move an order between two statuses, or None if illegal."""
    return ORDER_TRANSITIONS.get(from_status, {}).get(to_status)


class OrderService:
    """Service class for order operations."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.companies = CompanyService(db)

    async def _participant_role(self, order: Order, actor: User) -> str | None:
        """The role under which the actor participates in the order, if any."""
        if actor.is_admin:
            return ADMIN
        if order.client_id == actor.user_id:
            return CLIENT
        if actor.role == PRODUCER:
            company = await self.companies.get_owned_company(actor)
            if company is not None and company.company_id == order.company_id:
                return PRODUCER
        return None

    async def get_order(self, order_id: UUID, actor: User) -> Order:
        """Get an order visible to its client, its company owner or an admin."""
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if await self._participant_role(order, actor) is None:
            raise AuthorizationError("You are not a participant of this order")
        return order

    async def list_orders(
        self, actor: User, skip: int = 0, limit: int = 100
    ) -> list[Order]:
        """Orders visible to the actor, newest first."""
        query = select(Order)
        if actor.is_admin:
            pass
        elif actor.role == PRODUCER:
            company = await self.companies.get_owned_company(actor)
            if company is None:
                return []
            query = query.where(Order.company_id == company.company_id)
        else:
            query = query.where(Order.client_id == actor.user_id)

        result = await self.db.execute(
            query.order_by(Order.created_at.desc(), Order.order_id).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def update_status(self, order_id: UUID, actor: User, new_status: str) -> Order:
        """Move an order along the transition table.

        Checks run in this order: participant, legal transition, role.

        Raises:
            NotFoundError: Order does not exist
            AuthorizationError: Not a participant, or role not allowed
            InvalidStateError: Transition not in the table (order untouched)
            ConflictError: Status changed concurrently
            DependencyError: Database failure
        """
        new_status = getattr(new_status, "value", new_status)

        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        role = await self._participant_role(order, actor)
        if role is None:
            raise AuthorizationError("Only the client, the producer or an admin can change this order")

        old_status = order.status
        roles = allowed_roles(old_status, new_status)
        if roles is None:
            raise InvalidStateError(f"Cannot transition from '{old_status}' to '{new_status}'")
        if role not in roles:
            raise AuthorizationError(
                f"Only {' or '.join(sorted(roles))} can move an order from "
                f"'{old_status}' to '{new_status}'"
            )

        values: dict = {"status": new_status, "updated_at": utcnow()}
        if new_status == OrderStatus.COMPLETED.value:
            values["completed_at"] = utcnow()

        try:
            # Guarded on the status we validated against.
            result = await self.db.execute(
                update(Order)
                .where(Order.order_id == order_id, Order.status == old_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise ConflictError("Order status was changed concurrently, reload and retry")

            if new_status == OrderStatus.COMPLETED.value:
                await self.db.execute(
                    update(Request)
                    .where(
                        Request.request_id == order.request_id,
                        Request.status == RequestStatus.IN_PROGRESS.value,
                    )
                    .values(status=RequestStatus.COMPLETED.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to move order {order_id} to {new_status}: {e}")
            raise DependencyError("Failed to update order") from e

        await self.db.refresh(order)

        ORDER_STATUS_CHANGES.labels(from_status=old_status, to_status=new_status).inc()
        logger.info(f"Order {order_id} {old_status} -> {new_status} by {role} {actor.user_id}")

        if self.dispatcher is not None:
            self.dispatcher.dispatch(notify_order_transition, order.order_id, old_status, new_status)
        return order
