"""Catalog products and the per-company prices listed for them."""

import enum
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from westroy.core.database import Base
from westroy.models.base import CreatedAtMixin

if TYPE_CHECKING:
    from westroy.models.company import Company


class StockStatus(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    ON_ORDER = "ON_ORDER"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class Product(Base, CreatedAtMixin):
    """Product model representing a catalog item."""

    __tablename__ = "products"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    article: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    brand: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    image_url: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )
    unit: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="шт",
    )
    category_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("categories.category_id"),
        nullable=False,
    )

    # Relationships
    prices: Mapped[List["ProductPrice"]] = relationship(
        "ProductPrice",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_products_category_created", "category_id", "created_at"),
    )


class ProductPrice(Base, CreatedAtMixin):
    """A company's catalog price for a product."""

    __tablename__ = "product_prices"

    price_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("products.product_id", ondelete="CASCADE"),
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
        default=Decimal("0"),
    )
    price_unit: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="",
    )
    stock_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=StockStatus.IN_STOCK.value,
    )

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="prices")
    company: Mapped["Company"] = relationship("Company")

    __table_args__ = (
        CheckConstraint("price >= 0", name="chk_product_price_non_negative"),
        Index("idx_product_prices_company", "company_id"),
        Index("idx_product_prices_product", "product_id"),
    )
