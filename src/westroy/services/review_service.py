"""Review service: client reviews of completed orders and company ratings."""

import logging
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from westroy.models.order import Order, OrderStatus
from westroy.models.review import Review
from westroy.models.user import User
from westroy.schemas.review import CompanyRating
from westroy.services.company_service import CompanyService

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000


def round_rating(total: int, count: int) -> float:
    """Mean rating rounded half-up to one decimal: [5, 4, 4] -> 4.3."""
    mean = Decimal(total) / Decimal(count)
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class ReviewService:
    """Service class for review operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_review(
        self, order_id: UUID, actor: User, rating: int, comment: str | None = None
    ) -> Review:
        """Create the single review for a completed order.

        Raises:
            ValidationError: Rating outside 1..5 or comment too long
            NotFoundError: Order does not exist
            AuthorizationError: Actor is not the order's client or an admin
            InvalidStateError: Order is not completed
            ConflictError: Order already reviewed
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer from 1 to 5")
        if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters")

        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.client_id != actor.user_id and not actor.is_admin:
            raise AuthorizationError("Only the order's client can leave a review")
        if order.status != OrderStatus.COMPLETED.value:
            raise InvalidStateError(
                f"Only completed orders can be reviewed (order is '{order.status}')"
            )

        existing = await self.db.execute(select(Review.review_id).where(Review.order_id == order_id))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("This order has already been reviewed")

        review = Review(
            order_id=order.order_id,
            client_id=order.client_id,
            company_id=order.company_id,
            rating=rating,
            comment=comment or None,
        )

        try:
            self.db.add(review)
            await self.db.commit()
        except IntegrityError:
            # Lost a race against another review of the same order
            await self.db.rollback()
            raise ConflictError("This order has already been reviewed")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create review for order {order_id}: {e}")
            raise DependencyError("Failed to create review") from e
        await self.db.refresh(review)

        logger.info(f"Review {review.review_id} ({rating}) for company {order.company_id}")
        return review

    async def company_rating(self, company_id: UUID) -> CompanyRating:
        """Recompute a company's rating from all of its reviews."""
        result = await self.db.execute(
            select(func.count(Review.review_id), func.coalesce(func.sum(Review.rating), 0)).where(
                Review.company_id == company_id
            )
        )
        count, total = result.one()
        if not count:
            return CompanyRating(count=0, avg_rating=None)
        return CompanyRating(count=count, avg_rating=round_rating(int(total), count))

    async def list_company_reviews(
        self, company_id: UUID, limit: int = 50
    ) -> tuple[list[Review], CompanyRating]:
        """Newest reviews for a company together with its rating."""
        await CompanyService(self.db).get_company(company_id)

        result = await self.db.execute(
            select(Review)
            .where(Review.company_id == company_id)
            .order_by(Review.created_at.desc(), Review.review_id)
            .limit(limit)
        )
        reviews = list(result.scalars().all())
        return reviews, await self.company_rating(company_id)
