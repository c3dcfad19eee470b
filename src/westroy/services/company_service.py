"""Company lookups shared by the lifecycle services."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.exceptions import NotFoundError
from westroy.models.company import Company
from westroy.models.user import User


class CompanyService:
    """Service class for company operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_company(self, company_id: UUID) -> Company:
        company = await self.db.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company not found")
        return company

    async def get_owned_company(self, user: User) -> Company | None:
        """The company a producer owns, if any."""
        result = await self.db.execute(select(Company).where(Company.owner_id == user.user_id))
        return result.scalar_one_or_none()
