# app/db/queries.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.time_utils import as_utc
from app.db.models import (
    BLOCKING_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    ChargingSession,
    Connector,
    Station,
)


async def get_station(db: AsyncSession, station_id: int) -> Optional[Station]:
    return (await db.execute(select(Station).where(Station.id == station_id))).scalar_one_or_none()


async def get_connector(db: AsyncSession, connector_id: int, for_update: bool = False) -> Optional[Connector]:
    q = select(Connector).where(Connector.id == connector_id)
    if for_update:
        q = q.with_for_update()
    return (await db.execute(q)).scalar_one_or_none()


async def get_connector_by_vendor_id(
    db: AsyncSession,
    vendor_connector_id: str,
    station_id: Optional[int] = None,
    for_update: bool = False,
) -> Optional[Connector]:
    q = select(Connector).where(Connector.vendor_connector_id == vendor_connector_id)
    if station_id is not None:
        q = q.where(Connector.station_id == station_id)
    if for_update:
        q = q.with_for_update()
    return (await db.execute(q.limit(1))).scalar_one_or_none()


async def list_station_connectors(db: AsyncSession, station_id: int) -> List[Connector]:
    res = await db.execute(
        select(Connector)
        .where(Connector.station_id == station_id)
        .order_by(Connector.connector_number)
    )
    return list(res.scalars().all())


async def find_overlapping_booking(
    db: AsyncSession,
    connector_id: int,
    start: datetime,
    end: datetime,
    statuses: Sequence[str] = BLOCKING_BOOKING_STATUSES,
) -> Optional[Booking]:
    """
    [start, end) átfedés: existing.start < end AND existing.end > start.
    """
    q = select(Booking).where(
        and_(
            Booking.connector_id == connector_id,
            Booking.status.in_(list(statuses)),
            Booking.start_ts < as_utc(end),
            Booking.end_ts > as_utc(start),
        )
    )
    return (await db.execute(q.limit(1))).scalar_one_or_none()


async def list_overlapping_bookings(
    db: AsyncSession,
    connector_ids: Iterable[int],
    start: datetime,
    end: datetime,
) -> List[Booking]:
    ids = list(connector_ids)
    if not ids:
        return []
    res = await db.execute(
        select(Booking).where(
            and_(
                Booking.connector_id.in_(ids),
                Booking.status.in_(list(BLOCKING_BOOKING_STATUSES)),
                Booking.start_ts < as_utc(end),
                Booking.end_ts > as_utc(start),
            )
        )
    )
    return list(res.scalars().all())


async def get_booking(
    db: AsyncSession, booking_id: int, for_update: bool = False, skip_locked: bool = False
) -> Optional[Booking]:
    q = select(Booking).where(Booking.id == booking_id)
    if for_update:
        q = q.with_for_update(skip_locked=skip_locked)
    return (await db.execute(q)).scalar_one_or_none()


async def get_booking_by_vendor_id(db: AsyncSession, vendor_booking_id: str) -> Optional[Booking]:
    res = await db.execute(
        select(Booking).where(Booking.vendor_booking_id == vendor_booking_id).limit(1)
    )
    return res.scalar_one_or_none()


async def list_user_bookings(
    db: AsyncSession,
    user_id: int,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Booking]:
    q = select(Booking).where(Booking.user_id == user_id)
    if status:
        q = q.where(Booking.status == status)
    q = q.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset)
    return list((await db.execute(q)).scalars().all())


async def list_no_show_candidates(
    db: AsyncSession,
    now: datetime,
    grace: timedelta,
    lookback: timedelta,
) -> List[int]:
    """
    CONFIRMED foglalások, ahol start + grace már elmúlt, de start az utolsó lookback-en belül van.
    """
    now = as_utc(now)
    res = await db.execute(
        select(Booking.id)
        .where(
            and_(
                Booking.status == BookingStatus.CONFIRMED.value,
                Booking.start_ts < now - grace,
                Booking.start_ts > now - lookback,
            )
        )
        .order_by(Booking.start_ts)
    )
    return [row[0] for row in res.all()]


async def get_charging_session(
    db: AsyncSession, session_id: int, for_update: bool = False
) -> Optional[ChargingSession]:
    q = select(ChargingSession).where(ChargingSession.id == session_id)
    if for_update:
        q = q.with_for_update()
    return (await db.execute(q)).scalar_one_or_none()


async def find_session_by_vendor_id(
    db: AsyncSession,
    vendor_session_id: str,
    open_only: bool = False,
    for_update: bool = False,
) -> Optional[ChargingSession]:
    q = select(ChargingSession).where(ChargingSession.vendor_session_id == vendor_session_id)
    if open_only:
        q = q.where(ChargingSession.ended_at.is_(None))
    if for_update:
        q = q.with_for_update()
    q = q.order_by(ChargingSession.started_at.desc()).limit(1)
    return (await db.execute(q)).scalar_one_or_none()


async def find_open_session_for_booking(db: AsyncSession, booking_id: int) -> Optional[ChargingSession]:
    q = (
        select(ChargingSession)
        .where(ChargingSession.booking_id == booking_id, ChargingSession.ended_at.is_(None))
        .order_by(ChargingSession.started_at.desc())
        .limit(1)
    )
    return (await db.execute(q)).scalar_one_or_none()
