"""User model for clients, producers and administrators."""

import enum
import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import TimestampMixin

if TYPE_CHECKING:
    from westroy.models.company import Company


class UserRole(str, enum.Enum):
    CLIENT = "client"
    PRODUCER = "producer"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """A marketplace account."""

    __tablename__ = "users"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    phone: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="",
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserRole.CLIENT.value,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
    )

    # Relationships
    company: Mapped[Optional["Company"]] = relationship("Company", back_populates="owner")

    __table_args__ = (
        CheckConstraint("role IN ('client', 'producer', 'admin')", name="chk_user_role"),
        Index("idx_users_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
