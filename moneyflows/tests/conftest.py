"""Shared pytest fixtures for engine, store and API tests."""

from __future__ import annotations

import os

os.environ.setdefault("MONEYFLOWS_ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from moneyflows.core.config import settings
from moneyflows.db.base import Base
from moneyflows.main import app
from moneyflows.services.banking import StaticBankingGateway
from moneyflows.services.money_flow_service import MoneyFlowEngine
from moneyflows.services.rule_store import InMemoryRuleStore
from moneyflows.services.sql_rule_store import SqlRuleStore
from moneyflows.tests.utils import FakeClock

MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def bank() -> StaticBankingGateway:
    return StaticBankingGateway({"acct-main": 1000000, "acct-savings": 0})


@pytest.fixture()
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture()
def engine(store: InMemoryRuleStore, bank: StaticBankingGateway, clock: FakeClock) -> MoneyFlowEngine:
    return MoneyFlowEngine(store, bank, bank, clock=clock, config=settings)


@pytest_asyncio.fixture()
async def session_factory() -> async_sessionmaker[AsyncSession]:
    database_url = settings.test_database_url or MEMORY_DATABASE_URL
    url = make_url(database_url)
    options: dict = {}
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # One shared connection, otherwise every session sees an empty database.
        options["poolclass"] = StaticPool
    db_engine = create_async_engine(database_url, future=True, **options)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(db_engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await db_engine.dispose()


@pytest.fixture()
def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlRuleStore:
    return SqlRuleStore(session_factory)


@pytest_asyncio.fixture()
async def client(engine: MoneyFlowEngine) -> AsyncClient:
    app.state.engine = engine
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as async_client:
        yield async_client
    app.state.engine = None
