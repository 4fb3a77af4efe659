"""Test configuration and fixtures."""

import os

# The application engine is built at import time; keep it off postgres
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WORKERS_ENABLED", "false")

from datetime import datetime, timedelta

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from seatline.core.config import settings
from seatline.core.database import Base, get_db
from seatline.models import *  # noqa: F403 - Import all models
from seatline.schemas.bus import CreateBusRequest
from seatline.schemas.route import CreateRouteRequest, StopInput
from seatline.schemas.trip import CreateTripRequest
from seatline.services import BusService, RouteService, TripService

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ROUTE_STOPS = ["Lima", "Huaral", "Huacho", "Barranca", "Huarmey", "Chimbote"]
SEAT_NUMBERS = [str(number) for number in range(1, 41)]


class FixedClock:
    """Controllable clock handed to services instead of utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_token(user_id: str, role: str) -> str:
    """Sign a bearer token the way the identity provider would."""
    return jwt.encode({"sub": user_id, "role": role}, settings.bearer_token_secret, algorithm="HS256")


def auth_headers(user_id: str, role: str, idempotency_key: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {make_token(user_id, role)}"}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session):
    """Create a test FastAPI application."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError

    from seatline.core.exceptions import (
        ProblemDetailsException,
        generic_exception_handler,
        problem_details_handler,
        validation_exception_handler,
    )
    from seatline.routers import availability, bus, health, hold, metrics, overbooking, parcel, route, ticket, trip

    # Create a simplified test app without lifespan
    app = FastAPI(
        title="Seatline API (Test)",
        description="Test version of the API",
        version="1.0.0-test",
    )

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register API routers
    app.include_router(health.router)
    app.include_router(route.router)
    app.include_router(bus.router)
    app.include_router(trip.router)
    app.include_router(availability.router)
    app.include_router(hold.router)
    app.include_router(ticket.router)
    app.include_router(overbooking.router)
    app.include_router(parcel.router)
    app.include_router(metrics.router)

    # Override database dependency
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    from httpx import ASGITransport
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant, advanced explicitly by tests."""
    return FixedClock(datetime(2026, 3, 2, 8, 0, 0))


@pytest_asyncio.fixture
async def route(test_session):
    """Route with six stops at ordinals 0..5."""
    return await RouteService(test_session).create_route(
        CreateRouteRequest(
            name="Lima - Chimbote",
            stops=[StopInput(name=name, ordinal=ordinal) for ordinal, name in enumerate(ROUTE_STOPS)],
        )
    )


@pytest_asyncio.fixture
async def bus(test_session):
    """Bus with seats 1..40."""
    return await BusService(test_session).create_bus(
        CreateBusRequest(plate="ABC-123", seat_numbers=SEAT_NUMBERS)
    )


@pytest_asyncio.fixture
async def trip(test_session, route, bus, clock):
    """Trip departing two days from the fixed clock, bus assigned."""
    return await TripService(test_session, clock).create_trip(
        CreateTripRequest(
            route_id=route.id,
            bus_id=bus.id,
            departure_at=clock.now + timedelta(days=2),
            arrival_eta=clock.now + timedelta(days=2, hours=7),
        )
    )


@pytest.fixture
def token_for():
    """Bearer token factory: ``token_for(user_id, role)``."""
    return make_token


@pytest.fixture
def headers_for():
    """Header factory: ``headers_for(user_id, role, idempotency_key=None)``."""
    return auth_headers


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "ADMIN")


@pytest.fixture
def clerk_headers():
    return auth_headers("clerk-1", "CLERK")


@pytest.fixture
def dispatcher_headers():
    return auth_headers("dispatcher-1", "DISPATCHER")


@pytest.fixture
def driver_headers():
    return auth_headers("driver-1", "DRIVER")


@pytest.fixture
def passenger_headers():
    return auth_headers("passenger-1", "PASSENGER")
