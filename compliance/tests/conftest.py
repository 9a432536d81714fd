"""Async test fixtures for compliance tests using SQLite."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from compliance.config import settings
from compliance.database import get_db
from compliance.models.account import Account, AccountUser
from compliance.models.base import Base
from compliance.models.integration_hook import SHOPIFY_APP_ID, IntegrationHook

SHOP_DOMAIN = "test-shop.myshopify.com"
OWNER_EMAIL = "owner@test-shop.com"
WEBHOOK_SECRET = "test-client-secret"


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def account(db: AsyncSession):
    acct = Account(name="Test Store", status="active")
    db.add(acct)
    await db.commit()
    await db.refresh(acct)

    db.add(
        AccountUser(
            account_id=acct.id, name="Store Owner", email=OWNER_EMAIL, role="administrator"
        )
    )
    await db.commit()
    return acct


@pytest_asyncio.fixture
async def shop_hook(db: AsyncSession, account: Account):
    hook = IntegrationHook(
        account_id=account.id,
        app_id=SHOPIFY_APP_ID,
        reference_id=SHOP_DOMAIN,
        access_token="shpat_test_token",
        status="enabled",
        settings={"shop_domain": SHOP_DOMAIN},
    )
    db.add(hook)
    await db.commit()
    await db.refresh(hook)
    return hook


@pytest.fixture
def webhook_secret(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(settings, "shopify_client_secret", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTPX async test client against the compliance app."""
    from compliance.app import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
