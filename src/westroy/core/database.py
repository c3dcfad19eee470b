from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from westroy.core.config import settings


def _engine_options(url: str) -> dict:
    """Pool settings for server databases; SQLite manages its own connections."""
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 10,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 300,  # Connection recycling for freshness
        "pool_pre_ping": True,  # Verify connection health before use
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_all() -> None:
    """Create missing tables from the ORM metadata."""
    import westroy.models  # noqa: F401  (populate metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
