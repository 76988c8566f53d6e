"""
Pytest configuration and shared test fixtures.

Environment variables are set before the application is imported so the
cached settings pick them up. Database tests run against a fresh SQLite file
per test; API tests drive the ASGI app in-process through httpx with the
database session and payment gateway replaced via dependency overrides.
"""

import os
import tempfile
from decimal import Decimal
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault(
    "APP_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'marketplace-test.db')}",
)
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("APP_PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("APP_STRIPE_SECRET_KEY", "sk_test_fake_key")
os.environ.setdefault("APP_PUBLIC_BASE_URL", "https://api.example.com")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from marketplace.api.deps import get_gateway_client
from marketplace.api.limiter import limiter
from marketplace.core.config import Settings, get_settings
from marketplace.core.security import create_access_token, hash_password
from marketplace.database.connection import create_session_factory, get_db
from marketplace.database.models import Base, Site, User, UserRole
from marketplace.main import app
from marketplace.services.orders.enums import GatewayPaymentStatus
from marketplace.services.payments.stripe_client import (
    GatewayCheckout,
    StripeGatewayClient,
)


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Cached application settings built from the test environment."""
    return get_settings()


@pytest.fixture(autouse=True)
def disable_rate_limiting():
    """Keep slowapi out of the way unless a test turns it back on."""
    limiter.enabled = False
    yield
    limiter.enabled = True


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    """
    Async engine on a per-test SQLite file with all tables created.

    NullPool gives every session its own connection, so concurrent sessions
    really compete for the database lock.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def create_user(
    session: AsyncSession,
    email: str = "buyer@example.com",
    full_name: str = "Maria Silva",
    password: str = "SecurePass123",
    role: UserRole = UserRole.USER,
    is_active: bool = True,
) -> User:
    user = User(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_active=is_active,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def create_site(
    session: AsyncSession,
    name: str = "Bakery Landing Page",
    price_sale: Optional[Decimal] = Decimal("150.00"),
    price_rent: Optional[Decimal] = Decimal("80.00"),
    is_available: bool = True,
) -> Site:
    site = Site(
        name=name,
        description="Responsive landing page with online menu",
        price_sale=price_sale,
        price_rent=price_rent,
        main_image_url="https://cdn.example.com/bakery.png",
        site_link="https://bakery.example.com",
        additional_links=[],
        is_available=is_available,
    )
    session.add(site)
    await session.commit()
    await session.refresh(site)
    return site


@pytest.fixture
async def buyer(db_session) -> User:
    return await create_user(db_session)


@pytest.fixture
async def admin(db_session) -> User:
    return await create_user(
        db_session,
        email="admin@example.com",
        full_name="Site Admin",
        role=UserRole.ADMIN,
    )


@pytest.fixture
async def site(db_session) -> Site:
    return await create_site(db_session)


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(subject=user.id, extra_claims={"role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Payment gateway
# ============================================================================


@pytest.fixture
def fake_gateway() -> MagicMock:
    """
    Gateway double returning an approved-pending Pix checkout by default.
    """
    gateway = MagicMock(spec=StripeGatewayClient)
    gateway.create_checkout = AsyncMock(
        return_value=GatewayCheckout(
            gateway_reference="pi_test_123",
            status=GatewayPaymentStatus.PENDING,
            redirect_url="https://pay.example.com/pix/pi_test_123",
            client_secret="pi_test_123_secret",
        )
    )
    gateway.fetch_payment = AsyncMock()
    return gateway


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
async def async_client(session_factory, fake_gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    Asynchronous client for the application with test dependencies.

    Each request gets its own session from the per-test database, and the
    Stripe client is replaced by ``fake_gateway``.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: fake_gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
