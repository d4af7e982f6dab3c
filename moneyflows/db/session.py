"""Async engine and session factory for the SQL rule store."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from moneyflows.core.config import settings
from moneyflows.db.base import Base

engine: AsyncEngine = create_async_engine(settings.database_url, future=True)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(target: AsyncEngine | None = None) -> None:
    """Create automation tables if they do not exist yet."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
