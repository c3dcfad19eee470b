"""SQLAlchemy ORM models."""

from westroy.models.base import CreatedAtMixin, TimestampMixin
from westroy.models.category import Category
from westroy.models.company import Company, company_categories
from westroy.models.offer import Offer, OfferStatus
from westroy.models.order import Order, OrderStatus
from westroy.models.product import Product, ProductPrice, StockStatus
from westroy.models.request import Request, RequestStatus
from westroy.models.review import Review
from westroy.models.user import User, UserRole

__all__ = [
    "CreatedAtMixin",
    "TimestampMixin",
    "User",
    "UserRole",
    "Category",
    "Company",
    "company_categories",
    "Product",
    "ProductPrice",
    "StockStatus",
    "Request",
    "RequestStatus",
    "Offer",
    "OfferStatus",
    "Order",
    "OrderStatus",
    "Review",
]
