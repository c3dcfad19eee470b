"""Request model: a buyer's purchase intent awaiting producer offers."""

import enum
import uuid
from typing import TYPE_CHECKING, List

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import TimestampMixin

if TYPE_CHECKING:
    from westroy.models.offer import Offer


class RequestStatus(str, enum.Enum):
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_REQUEST_STATUSES = frozenset({RequestStatus.COMPLETED.value, RequestStatus.CANCELLED.value})


class Request(Base, TimestampMixin):
    """A buyer's structured purchase request."""

    __tablename__ = "requests"

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("categories.category_id"),
        nullable=False,
    )
    query: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    parsed_category: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    parsed_volume: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    parsed_city: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="Шымкент",
    )
    delivery_needed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    address: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    deadline: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.ACTIVE.value,
    )

    # Relationships
    offers: Mapped[List["Offer"]] = relationship(
        "Offer",
        back_populates="request",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'in_progress', 'completed', 'cancelled')",
            name="chk_request_status",
        ),
        Index("idx_requests_user_created", "user_id", "created_at"),
        Index("idx_requests_category_status", "category_id", "status"),
    )
