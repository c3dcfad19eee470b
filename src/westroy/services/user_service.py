"""User service for registration and authentication."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from westroy.core.exceptions import ValidationError
from westroy.core.security import get_password_hash, verify_password
from westroy.models.user import User
from westroy.schemas.user import UserRegister


class UserService:
    """Service class for user operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> User | None:
        """Get user by email."""
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Get user by ID."""
        result = await self.db.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    async def create_user(self, user_data: UserRegister) -> User:
        """Create a new client or producer account.

        Args:
            user_data: User registration data

        Returns:
            Created user

        Raises:
            ValidationError: If email already exists
        """
        email = user_data.email.lower()
        existing = await self.get_by_email(email)
        if existing:
            raise ValidationError("Email already registered")

        user = User(
            email=email,
            password_hash=get_password_hash(user_data.password),
            name=user_data.name,
            phone=user_data.phone,
            role=user_data.role,
            status="active",
        )

        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError("Email already registered")

    async def authenticate(self, email: str, password: str) -> User | None:
        """Authenticate user by email and password.

        Args:
            email: User email
            password: Plain text password

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_by_email(email)
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        if user.status != "active":
            return None
        return user
