"""Company model for producers and dealers."""

import uuid
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, Column, ForeignKey, String, Table, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import CreatedAtMixin

if TYPE_CHECKING:
    from westroy.models.category import Category
    from westroy.models.user import User


company_categories = Table(
    "company_categories",
    Base.metadata,
    Column(
        "company_id",
        Uuid,
        ForeignKey("companies.company_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "category_id",
        String(64),
        ForeignKey("categories.category_id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Company(Base, CreatedAtMixin):
    """A producer or dealer that answers requests and lists catalog prices."""

    __tablename__ = "companies"

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    address: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="",
    )
    phone: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="",
    )
    delivery: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    owner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.user_id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )

    # Relationships
    owner: Mapped[Optional["User"]] = relationship("User", back_populates="company")
    categories: Mapped[List["Category"]] = relationship(
        "Category", secondary=company_categories
    )
