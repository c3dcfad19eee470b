"""Pydantic schemas for request/response validation."""

from westroy.schemas.offer import OfferCreate, OfferListResponse, OfferResponse, OfferStatusUpdate
from westroy.schemas.order import OrderListResponse, OrderResponse, OrderStatusUpdate
from westroy.schemas.query import ParsedQuery, Suggestion
from westroy.schemas.request import (
    RequestCreate,
    RequestListItem,
    RequestListResponse,
    RequestResponse,
    RequestStatusUpdate,
)
from westroy.schemas.review import CompanyRating, CompanyReviewsResponse, ReviewCreate, ReviewResponse
from westroy.schemas.search import (
    CompanyStats,
    CompanySummary,
    ProductSummary,
    SearchFilters,
    SearchMeta,
    SearchResponse,
    SearchResult,
    SubCategory,
)
from westroy.schemas.user import TokenResponse, UserLogin, UserRegister, UserResponse

__all__ = [
    "UserRegister",
    "UserLogin",
    "UserResponse",
    "TokenResponse",
    "ParsedQuery",
    "Suggestion",
    "RequestCreate",
    "RequestStatusUpdate",
    "RequestResponse",
    "RequestListItem",
    "RequestListResponse",
    "OfferCreate",
    "OfferStatusUpdate",
    "OfferResponse",
    "OfferListResponse",
    "OrderStatusUpdate",
    "OrderResponse",
    "OrderListResponse",
    "ReviewCreate",
    "ReviewResponse",
    "CompanyRating",
    "CompanyReviewsResponse",
    "SearchFilters",
    "SearchMeta",
    "SearchResponse",
    "SearchResult",
    "ProductSummary",
    "CompanySummary",
    "CompanyStats",
    "SubCategory",
]
