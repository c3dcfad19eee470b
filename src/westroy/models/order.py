"""Order model: the committed deal created when an offer is accepted."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import TimestampMixin

if TYPE_CHECKING:
    from westroy.models.company import Company
    from westroy.models.offer import Offer
    from westroy.models.review import Review


class OrderStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Order(Base, TimestampMixin):
    """Order model. One per accepted offer, and so one per request."""

    __tablename__ = "orders"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    # Unique: a second acceptance racing on the same offer or request
    # fails at commit instead of creating a second order.
    offer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("offers.offer_id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("requests.request_id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id"),
        nullable=False,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.company_id"),
        nullable=False,
    )
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    delivery_address: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.CONFIRMED.value,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    offer: Mapped["Offer"] = relationship("Offer")
    company: Mapped["Company"] = relationship("Company")
    review: Mapped[Optional["Review"]] = relationship("Review", back_populates="order")

    __table_args__ = (
        CheckConstraint("total_price >= 0", name="chk_order_total_non_negative"),
        CheckConstraint(
            "status IN ('confirmed', 'delivering', 'delivered', 'cancelled', 'completed')",
            name="chk_order_status",
        ),
        Index("idx_orders_client_created", "client_id", "created_at"),
        Index("idx_orders_company_created", "company_id", "created_at"),
        Index("idx_orders_status", "status"),
    )
