import os

# Settings are read once at import time; pin the test environment first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CHECKOUT_VERIFY_PINCODE"] = "true"
os.environ["SHIPROCKET_WEBHOOK_TOKEN"] = ""
os.environ["RAZORPAY_KEY_ID"] = ""
os.environ["RAZORPAY_KEY_SECRET"] = ""
os.environ["SHIPROCKET_EMAIL"] = ""
os.environ["SHIPROCKET_PASSWORD"] = ""

from contextlib import contextmanager
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.session import get_async_db
from services.storefront_service import models as _storefront_models  # noqa: F401
from services.storefront_service.app.main import app
from services.storefront_service.dependencies import (
    get_postal_client,
    get_razorpay_client,
    get_shiprocket_client,
)
from tests.fakes import FakePostal, FakeRazorpay, FakeShiprocket

get_settings.cache_clear()
settings = get_settings()


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_user(user_id: str = "shopper-1", email: str = "shopper@test.com") -> AuthUser:
    return AuthUser(user_id=user_id, email=email, role="authenticated")


def make_admin_user(user_id: str = "admin-1") -> AuthUser:
    return AuthUser(
        user_id=user_id,
        email="admin@test.com",
        role="authenticated",
        app_metadata={"role": "admin"},
    )


@contextmanager
def override_auth(target_app, user):
    """Temporarily act as ``user`` (None = anonymous) for requests to the app."""
    previous = target_app.dependency_overrides.get(get_optional_user)
    target_app.dependency_overrides[get_optional_user] = lambda: user
    try:
        yield
    finally:
        if previous is None:
            target_app.dependency_overrides.pop(get_optional_user, None)
        else:
            target_app.dependency_overrides[get_optional_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test; StaticPool keeps a single connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# External providers (httpx.MockTransport fakes)
# ---------------------------------------------------------------------------


@pytest.fixture
def razorpay_fake() -> FakeRazorpay:
    return FakeRazorpay()


@pytest.fixture
def shiprocket_fake() -> FakeShiprocket:
    return FakeShiprocket()


@pytest.fixture
def postal_fake() -> FakePostal:
    return FakePostal()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def storefront_client(
    session_factory, razorpay_fake, shiprocket_fake, postal_fake
) -> AsyncGenerator[AsyncClient, None]:
    """Client for the storefront app, signed in as a regular shopper."""

    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_db
    app.dependency_overrides[get_optional_user] = lambda: make_user()
    app.dependency_overrides[get_razorpay_client] = razorpay_fake.client
    app.dependency_overrides[get_shiprocket_client] = shiprocket_fake.client
    app.dependency_overrides[get_postal_client] = postal_fake.client

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
