# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import fakeredis
import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.container import build_services
from app.db.base import Base
from app.db.session import make_engine, make_session_factory
from app.db.models import Booking, BookingStatus, Connector, ConnectorStatus, PaymentStatus, Station

STATION_ID = 1
OTHER_STATION_ID = 2


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        redis_key_prefix="test:",
        no_show_worker_enabled=False,
        event_publish_timeout_seconds=0.5,
    )


@pytest.fixture
def base_time() -> datetime:
    # holnap 10:00 UTC, egész órára kerekítve
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    return tomorrow.replace(hour=10, minute=0, second=0, microsecond=0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")

    # SQLite-ban nincs SELECT ... FOR UPDATE: BEGIN IMMEDIATE sorosítja az írókat,
    # így a párhuzamos confirm ugyanúgy egymás után fut, mint Postgresen a sorzárral
    @event.listens_for(eng.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def redis():
    client = fake_aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def seeded(session_factory):
    """
    Station 1: connector 1 (CCS2), 2 (Type2), 3 (MAINTENANCE). Station 2: connector 4.
    """
    async with session_factory() as db:
        async with db.begin():
            db.add_all(
                [
                    Station(id=STATION_ID, name="Central Hub", address="1 Main St", city="Pune"),
                    Station(id=OTHER_STATION_ID, name="Airport", city="Pune"),
                ]
            )
            await db.flush()
            db.add_all(
                [
                    Connector(
                        id=1,
                        station_id=STATION_ID,
                        connector_number=1,
                        connector_type="CCS2",
                        power_kw=50.0,
                        vendor_connector_id="VC-1",
                    ),
                    Connector(
                        id=2,
                        station_id=STATION_ID,
                        connector_number=2,
                        connector_type="Type2",
                        power_kw=22.0,
                        vendor_connector_id="VC-2",
                    ),
                    Connector(
                        id=3,
                        station_id=STATION_ID,
                        connector_number=3,
                        connector_type="CHAdeMO",
                        power_kw=50.0,
                        status=ConnectorStatus.MAINTENANCE.value,
                        vendor_connector_id="VC-3",
                    ),
                    Connector(
                        id=4,
                        station_id=OTHER_STATION_ID,
                        connector_number=1,
                        connector_type="CCS2",
                        power_kw=120.0,
                        vendor_connector_id="VC-4",
                    ),
                ]
            )
    return STATION_ID


@pytest.fixture
def services(redis, session_factory, test_settings, seeded):
    return build_services(redis, session_factory, test_settings)


@pytest.fixture
def make_booking(session_factory):
    async def _make(
        connector_id: int,
        start: datetime,
        end: datetime,
        status: str = BookingStatus.CONFIRMED.value,
        user_id: int = 7,
        station_id: int = STATION_ID,
        hold_connector: bool = False,
        **fields,
    ) -> Booking:
        async with session_factory() as db:
            async with db.begin():
                booking = Booking(
                    user_id=user_id,
                    station_id=station_id,
                    connector_id=connector_id,
                    start_ts=start,
                    end_ts=end,
                    status=status,
                    payment_status=PaymentStatus.AUTHORIZED.value,
                    **fields,
                )
                db.add(booking)
                await db.flush()
                if hold_connector:
                    connector = await db.get(Connector, connector_id)
                    connector.status = ConnectorStatus.RESERVED.value
                    connector.current_booking_id = booking.id
        return booking

    return _make


@pytest.fixture
def get_row(session_factory):
    async def _get(model, pk):
        async with session_factory() as db:
            return await db.get(model, pk)

    return _get


@pytest_asyncio.fixture
async def client(services):
    from app.main import app

    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    del app.state.services
