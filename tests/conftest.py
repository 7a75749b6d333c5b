"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` lets the
concurrency tests open several connections at once; ``NullPool`` gives
every session its own connection, like separate clients.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from rideoffer.config import Settings
from rideoffer.domain.enums import DriverStatus, RideStatus, ServiceType
from rideoffer.infrastructure.database import create_tables
from rideoffer.infrastructure.models import DriverModel, RideModel, UserModel
from rideoffer.services.ride_protocol import RideProtocol

PASSENGER = "p-ana"
OTHER_PASSENGER = "p-bruno"
DRIVERS = ("d-carla", "d-dario", "d-elena", "d-fausto", "d-gina")
DRIVER_A, DRIVER_B = DRIVERS[0], DRIVERS[1]


class FakeClock:
    """Deterministic UTC clock the tests can move forward."""

    def __init__(self, start: datetime = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        arbitration_url=None,
        sentiment_url=None,
        _env_file=None,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh database file and seed the identities."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}", poolclass=NullPool
    )
    await create_tables(engine)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(UserModel(id=PASSENGER, name="Ana", email="ana@example.com"))
        session.add(UserModel(id=OTHER_PASSENGER, name="Bruno", email="bruno@example.com"))
        for driver_id in DRIVERS:
            session.add(
                DriverModel(
                    id=driver_id,
                    name=driver_id.split("-")[1].title(),
                    status=DriverStatus.AVAILABLE,
                    service_type=ServiceType.ECONOMY,
                )
            )
        await session.commit()

    yield factory
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def feed() -> MagicMock:
    """Stand-in for ``RideFeed``: records what was published."""
    mock = MagicMock()
    mock.publish = AsyncMock()
    return mock


@pytest.fixture
def protocol(session_factory, feed, clock, test_settings) -> RideProtocol:
    return RideProtocol(session_factory, feed, test_settings, clock=clock)


@pytest_asyncio.fixture
async def searching_ride(protocol):
    return await protocol.create_ride(
        PASSENGER, "Av. Larco 345", "Jockey Plaza", 20.0
    )


async def insert_ride(session_factory, **values) -> str:
    """Insert a ride row directly, bypassing the protocol."""
    defaults = dict(
        pickup="Parque Kennedy",
        dropoff="Barranco",
        fare=15.0,
        passenger_id=PASSENGER,
        status=RideStatus.SEARCHING,
        rejected_by=[],
        date=datetime(2024, 5, 10, 11, 0, tzinfo=timezone.utc),
        version=0,
    )
    defaults.update(values)
    async with session_factory() as session:
        model = RideModel(**defaults)
        session.add(model)
        await session.commit()
        return model.id
