"""Business logic services."""

from westroy.services.company_service import CompanyService
from westroy.services.offer_service import OfferService
from westroy.services.order_service import OrderService
from westroy.services.query_parser import QueryParser
from westroy.services.request_service import RequestService
from westroy.services.review_service import ReviewService
from westroy.services.search_service import SearchService
from westroy.services.user_service import UserService

__all__ = [
    "CompanyService",
    "OfferService",
    "OrderService",
    "QueryParser",
    "RequestService",
    "ReviewService",
    "SearchService",
    "UserService",
]
