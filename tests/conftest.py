"""Pytest configuration and fixtures for testing."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DB_CREATE_ALL", "false")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import westroy.models  # noqa: F401  (populate metadata)
from westroy.core.database import Base
from westroy.models.category import Category
from westroy.models.company import Company
from westroy.models.offer import Offer
from westroy.models.product import Product, ProductPrice, StockStatus
from westroy.models.request import Request
from westroy.models.user import User, UserRole
from westroy.services.notifications import (
    NotificationDispatcher,
    NotificationPayload,
    NotificationService,
)


class RecordingTransport:
    """Transport that keeps every payload it is given."""

    name = "recording"

    def __init__(self):
        self.sent: list[NotificationPayload] = []

    async def send(self, payload: NotificationPayload) -> None:
        self.sent.append(payload)

    def of_type(self, notification_type: str) -> list[NotificationPayload]:
        return [p for p in self.sent if p.type == notification_type]


class Factory:
    """Creates committed rows for lifecycle tests."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        await self.session.refresh(obj)
        return obj

    async def user(self, role: str = UserRole.CLIENT.value, email: str | None = None, **kwargs) -> User:
        return await self._save(
            User(
                email=email or f"{role}-{uuid4().hex[:8]}@example.com",
                password_hash="not-a-real-hash",
                name=kwargs.pop("name", f"Test {role}"),
                role=role,
                **kwargs,
            )
        )

    async def client(self, **kwargs) -> User:
        return await self.user(UserRole.CLIENT.value, **kwargs)

    async def producer(self, **kwargs) -> User:
        return await self.user(UserRole.PRODUCER.value, **kwargs)

    async def admin(self, **kwargs) -> User:
        return await self.user(UserRole.ADMIN.value, **kwargs)

    async def category(
        self, category_id: str = "concrete", name_ru: str = "Бетон", parent_id: str | None = None, **kwargs
    ) -> Category:
        existing = await self.session.get(Category, category_id)
        if existing is not None:
            return existing
        return await self._save(
            Category(
                category_id=category_id,
                name=kwargs.pop("name", category_id.title()),
                name_ru=name_ru,
                parent_id=parent_id,
                **kwargs,
            )
        )

    async def company(
        self,
        owner: User | None = None,
        categories: list[Category] | None = None,
        name: str | None = None,
        **kwargs,
    ) -> Company:
        company = Company(
            name=name or f"Company {uuid4().hex[:6]}",
            owner_id=owner.user_id if owner else None,
            **kwargs,
        )
        company.categories = list(categories or [])
        return await self._save(company)

    async def product(
        self,
        category: Category,
        prices: list[tuple[Company, Decimal | str | int]],
        name: str = "Бетон М300",
        stock_status: str = StockStatus.IN_STOCK.value,
        price_unit: str = "за м³",
        **kwargs,
    ) -> Product:
        product = Product(name=name, category_id=category.category_id, **kwargs)
        product.prices = [
            ProductPrice(
                company_id=company.company_id,
                price=Decimal(str(price)),
                price_unit=price_unit,
                stock_status=stock_status,
            )
            for company, price in prices
        ]
        return await self._save(product)

    async def request(self, client: User, category: Category, **kwargs) -> Request:
        return await self._save(
            Request(
                user_id=client.user_id,
                category_id=category.category_id,
                query=kwargs.pop("query", "бетон м300 10 кубов"),
                parsed_category=kwargs.pop("parsed_category", category.name_ru),
                parsed_volume=kwargs.pop("parsed_volume", "10 м³"),
                parsed_city=kwargs.pop("parsed_city", "Шымкент"),
                delivery_needed=kwargs.pop("delivery_needed", True),
                address=kwargs.pop("address", "ул. Тауке хана, 1"),
                **kwargs,
            )
        )

    async def offer(self, request: Request, company: Company, price="25000", **kwargs) -> Offer:
        return await self._save(
            Offer(
                request_id=request.request_id,
                company_id=company.company_id,
                price=Decimal(str(price)),
                **kwargs,
            )
        )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A fresh SQLite database per test, shared by every session it hands out."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


@pytest.fixture
def recorder() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def notifier(recorder) -> NotificationService:
    return NotificationService([recorder], ops_address="ops@example.com")


@pytest.fixture
def dispatcher(notifier, session_factory) -> NotificationDispatcher:
    return NotificationDispatcher(notifier, session_factory)


# Mock Redis client fixture
@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client with a registrable Lua script."""
    redis = AsyncMock()
    redis.register_script = MagicMock(return_value=AsyncMock(return_value=[1, 60_000]))
    return redis
