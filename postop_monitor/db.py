import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./postop_monitor.db")

engine = create_async_engine(DATABASE_URL, echo=False, future=True)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class Base(DeclarativeBase):
    pass


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create every table that does not exist yet.

    Schema changes are not migrated; tables are created on first start only.
    """
    # Register the mapped classes on Base.metadata before creating tables.
    from postop_monitor.models import clinician, records  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


__all__ = [
    "DATABASE_URL",
    "engine",
    "async_session_maker",
    "init_db",
    "get_session",
    "Base",
]
