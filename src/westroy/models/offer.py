"""Offer model: a producer's priced response to a request."""

import enum
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import CreatedAtMixin

if TYPE_CHECKING:
    from westroy.models.company import Company
    from westroy.models.request import Request


class OfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Offer(Base, CreatedAtMixin):
    """A company's bid against a request."""

    __tablename__ = "offers"

    offer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("requests.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    price_unit: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="за м³",
    )
    comment: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    delivery_included: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    delivery_price: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    valid_until: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OfferStatus.PENDING.value,
    )

    # Relationships
    request: Mapped["Request"] = relationship("Request", back_populates="offers")
    company: Mapped["Company"] = relationship("Company")

    __table_args__ = (
        CheckConstraint("price > 0", name="chk_offer_price_positive"),
        CheckConstraint(
            "delivery_price IS NULL OR delivery_price >= 0",
            name="chk_offer_delivery_price_non_negative",
        ),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="chk_offer_status",
        ),
        UniqueConstraint("request_id", "company_id", name="uq_offer_request_company"),
        Index("idx_offers_request_status", "request_id", "status"),
        Index("idx_offers_company_created", "company_id", "created_at"),
    )
