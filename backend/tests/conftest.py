"""
Pytest fixtures for test database, client, fakes and authentication.

Endpoint tests run against an in-memory SQLite database (aiosqlite) with
tables created from the model metadata for every test. The rate limiter
and payment gateway are swapped for in-process fakes through FastAPI
dependency overrides.
"""

import uuid
from datetime import time
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import FakePaymentGateway, InMemoryBookingRepository
from helpers import BOOKING_DAY
from tapn.api.deps import get_booking_rate_limiter, get_payment_gateway
from tapn.db.base import Base
from tapn.db.session import get_db
from tapn.main import app
from tapn.models import Booking, UserRole, Venue
from tapn.services.interfaces.memory_rate_limiter import InMemoryRateLimiter

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def rate_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_requests=3, window_seconds=600)


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def repo() -> InMemoryBookingRepository:
    """Repository for service-level tests that do not need a database."""
    return InMemoryBookingRepository()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    rate_limiter: InMemoryRateLimiter,
    gateway: FakePaymentGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB session, rate limiter and gateway overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_booking_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def partner_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def admin_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def member_id() -> str:
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def roles(db_session: AsyncSession, partner_id: str, admin_id: str, member_id: str) -> None:
    db_session.add_all([
        UserRole(user_id=partner_id, role="partner"),
        UserRole(user_id=admin_id, role="admin"),
        UserRole(user_id=member_id, role="user"),
    ])
    await db_session.commit()


@pytest_asyncio.fixture
async def test_venue(db_session: AsyncSession, partner_id: str, roles) -> Venue:
    venue = Venue(name="Rooftop Court", owner_id=partner_id)
    db_session.add(venue)
    await db_session.commit()
    await db_session.refresh(venue)
    return venue


@pytest_asyncio.fixture
async def confirmed_booking(db_session: AsyncSession, test_venue: Venue) -> Booking:
    """A confirmed 18:00-20:00 booking on BOOKING_DAY."""
    booking = Booking(
        venue_id=test_venue.id,
        booking_date=BOOKING_DAY,
        start_time=time(18, 0),
        end_time=time(20, 0),
        guest_count=2,
        total_price=5000,
        status="confirmed",
        payment_status="paid",
        payment_method="stripe",
        stripe_payment_intent_id="pi_existing000000000000000000",
        guest_name="Sam Carter",
        guest_phone="555 000 1111",
        guest_email="sam@example.com",
    )
    db_session.add(booking)
    await db_session.commit()
    await db_session.refresh(booking)
    return booking
