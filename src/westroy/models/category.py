"""Category tree for the catalog."""

from typing import List, Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import CreatedAtMixin


class Category(Base, CreatedAtMixin):
    """A catalog category, identified by a stable slug such as ``concrete``."""

    __tablename__ = "categories"

    category_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    name_ru: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    parent_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("categories.category_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    sort_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Relationships
    parent: Mapped[Optional["Category"]] = relationship(
        "Category", remote_side=[category_id], back_populates="children"
    )
    children: Mapped[List["Category"]] = relationship("Category", back_populates="parent")
