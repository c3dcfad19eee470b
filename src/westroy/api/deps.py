"""API dependencies for authentication, database access and services."""

from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.config import settings
from westroy.core.database import async_session_maker, get_db
from westroy.core.exceptions import AuthenticationError, AuthorizationError
from westroy.core.security import decode_access_token
from westroy.models.user import User
from westroy.services.llm_parser import build_llm_parser
from westroy.services.notifications import NotificationDispatcher, build_notification_service
from westroy.services.offer_service import OfferService
from westroy.services.order_service import OrderService
from westroy.services.query_parser import QueryParser
from westroy.services.request_service import RequestService
from westroy.services.review_service import ReviewService
from westroy.services.search_service import SearchService
from westroy.services.user_service import UserService

# auto_error=False so a missing header renders through the error taxonomy
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get current authenticated user from the JWT bearer token.

    Raises:
        AuthenticationError: Missing or invalid token, or unknown user
        AuthorizationError: User account is blocked
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid authentication token")

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Invalid token payload")

    try:
        user_uuid = UUID(user_id)
    except ValueError:
        raise AuthenticationError("Invalid user ID in token")

    user = await UserService(db).get_by_id(user_uuid)
    if user is None:
        raise AuthenticationError("User not found")
    if user.status != "active":
        raise AuthorizationError("User account is not active")
    return user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# Process-wide singletons
# =============================================================================

@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    """Dispatcher shared by all requests; triggers open their own sessions."""
    return NotificationDispatcher(build_notification_service(settings), async_session_maker)


@lru_cache
def get_query_parser() -> QueryParser:
    """Rules parser, enriched by the LLM when an API key is configured."""
    enricher = build_llm_parser(settings.OPENAI_API_KEY, settings.OPENAI_MODEL)
    return QueryParser(enricher=enricher, timeout_ms=settings.PARSER_LLM_TIMEOUT_MS)


Dispatcher = Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)]


# =============================================================================
# Service dependency injection
# =============================================================================

async def get_request_service(db: DbSession, dispatcher: Dispatcher) -> RequestService:
    return RequestService(db, dispatcher)


async def get_offer_service(db: DbSession, dispatcher: Dispatcher) -> OfferService:
    return OfferService(db, dispatcher)


async def get_order_service(db: DbSession, dispatcher: Dispatcher) -> OrderService:
    return OrderService(db, dispatcher)


async def get_review_service(db: DbSession) -> ReviewService:
    return ReviewService(db)


async def get_search_service(
    db: DbSession,
    parser: Annotated[QueryParser, Depends(get_query_parser)],
) -> SearchService:
    return SearchService(db, parser)


RequestServiceDep = Annotated[RequestService, Depends(get_request_service)]
OfferServiceDep = Annotated[OfferService, Depends(get_offer_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
ReviewServiceDep = Annotated[ReviewService, Depends(get_review_service)]
SearchServiceDep = Annotated[SearchService, Depends(get_search_service)]
