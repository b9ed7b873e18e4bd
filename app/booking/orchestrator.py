# app/booking/orchestrator.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from redis.exceptions import RedisError
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.booking.availability import AvailabilityCalculator
from app.booking.connector_status import ConnectorStatusProjection
from app.booking.events import EventPublisher, EventType
from app.booking.hold_store import Hold, HoldResult, HoldStore
from app.core.errors import (
    BackendUnavailable,
    BookingError,
    BookingNotFound,
    ConnectorNotFound,
    ConnectorUnavailable,
    InvalidHold,
    InvalidState,
    SlotUnavailable,
    Unauthorized,
    ValidationFailed,
)
from app.core.time_utils import as_utc
from app.db import queries
from app.db.models import (
    HOLD_BLOCKING_BOOKING_STATUSES,
    OUT_OF_SERVICE_STATUSES,
    Booking,
    BookingStatus,
    Connector,
    ConnectorStatus,
    PaymentStatus,
    VendorSyncStatus,
)

logger = logging.getLogger("booking")

CANCELLABLE_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ACTIVE.value,
)
MAX_PAGE_SIZE = 200


def _validate_window(start: Optional[datetime], end: Optional[datetime]) -> Tuple[datetime, datetime]:
    start, end = as_utc(start), as_utc(end)
    if start is None or end is None:
        raise ValidationFailed("start and end are required")
    if start >= end:
        raise ValidationFailed("start must be before end")
    return start, end


class BookingOrchestrator:
    """
    Hold -> Booking állapotgép. DB tranzakció soha nincs nyitva Redis hívás alatt;
    az overlap végső őre a Postgres EXCLUDE constraint.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hold_store: HoldStore,
        projection: ConnectorStatusProjection,
        availability: AvailabilityCalculator,
        events: EventPublisher,
    ) -> None:
        self.session_factory = session_factory
        self.hold_store = hold_store
        self.projection = projection
        self.availability = availability
        self.events = events

    # --- hold ---

    async def create_hold(
        self,
        station_id: int,
        connector_id: int,
        start: datetime,
        end: datetime,
        user_id: Optional[int],
    ) -> HoldResult:
        start, end = _validate_window(start, end)

        async with self.session_factory() as db:
            connector = await queries.get_connector(db, connector_id)
            if not connector or connector.station_id != station_id:
                raise ConnectorNotFound(f"Connector {connector_id} not found at station {station_id}")
            if connector.status in OUT_OF_SERVICE_STATUSES:
                raise ConnectorUnavailable(f"Connector is {connector.status}", status=connector.status)

            conflict = await queries.find_overlapping_booking(
                db, connector_id, start, end, HOLD_BLOCKING_BOOKING_STATUSES
            )

        if conflict:
            raise SlotUnavailable("Slot is already booked", connector_id=connector_id)

        result = await self.hold_store.create_hold(
            connector_id,
            start,
            end,
            {"user_id": user_id, "station_id": station_id},
        )

        await self.events.hold_created(station_id, connector_id, start, end, result.expires_in)
        await self.availability.invalidate(station_id)
        return result

    # --- confirm ---

    async def confirm_booking(self, hold_token: str, user_id: Optional[int], payment_ref: Optional[str] = None) -> Booking:
        hold = await self.hold_store.verify_hold(hold_token)
        if hold is None:
            raise InvalidHold("Hold not found or expired")
        if hold.user_id is not None and user_id is not None and int(hold.user_id) != int(user_id):
            raise InvalidHold("Hold belongs to another user")

        try:
            booking, connector = await self._insert_booking(hold, user_id, payment_ref)
        except IntegrityError as e:
            # EXCLUDE / unique hold_token: valaki más nyert
            logger.warning("booking_insert_conflict token=%s connector_id=%s", hold_token, hold.connector_id)
            await self._release_quietly(hold_token)
            raise SlotUnavailable("Slot was booked concurrently", connector_id=hold.connector_id) from e
        except DBAPIError as e:
            logger.exception("booking_insert_failed token=%s connector_id=%s", hold_token, hold.connector_id)
            await self._release_quietly(hold_token)
            raise BackendUnavailable("Booking store unavailable") from e
        except BookingError:
            await self._release_quietly(hold_token)
            raise
        except Exception:
            logger.exception("booking_confirm_unexpected token=%s", hold_token)
            await self._release_quietly(hold_token)
            raise

        await self._release_quietly(hold_token)
        await self.sync_connector_state(
            booking.station_id,
            connector.id,
            ConnectorStatus.RESERVED.value,
            booking_id=booking.id,
            vendor_connector_id=connector.vendor_connector_id,
            publish=False,
        )
        await self.events.booking_confirmed(booking.station_id, connector.id, booking.id, booking.start_ts, booking.end_ts)

        logger.info(
            "booking_confirmed id=%s user_id=%s connector_id=%s start=%s end=%s",
            booking.id,
            booking.user_id,
            booking.connector_id,
            booking.start_ts.isoformat(),
            booking.end_ts.isoformat(),
        )
        return booking

    async def _insert_booking(
        self, hold: Hold, user_id: Optional[int], payment_ref: Optional[str]
    ) -> Tuple[Booking, Connector]:
        owner = user_id if user_id is not None else hold.user_id
        if owner is None:
            raise InvalidHold("Hold has no owner")

        async with self.session_factory() as db:
            async with db.begin():
                connector = await queries.get_connector(db, hold.connector_id, for_update=True)
                if not connector:
                    raise ConnectorNotFound(f"Connector {hold.connector_id} not found")
                if connector.status in OUT_OF_SERVICE_STATUSES:
                    raise ConnectorUnavailable(f"Connector is {connector.status}", status=connector.status)

                # TOCTOU: hold óta jöhetett foglalás
                conflict = await queries.find_overlapping_booking(
                    db, connector.id, hold.start, hold.end, HOLD_BLOCKING_BOOKING_STATUSES
                )
                if conflict:
                    raise SlotUnavailable("Slot is already booked", connector_id=connector.id)

                booking = Booking(
                    user_id=int(owner),
                    station_id=connector.station_id,
                    connector_id=connector.id,
                    start_ts=hold.start,
                    end_ts=hold.end,
                    status=BookingStatus.CONFIRMED.value,
                    hold_token=hold.token,
                    payment_id=payment_ref,
                    payment_status=PaymentStatus.AUTHORIZED.value,
                    vendor_sync_status=VendorSyncStatus.PENDING.value,
                    meta=hold.metadata or None,
                )
                db.add(booking)
                await db.flush()

                connector.status = ConnectorStatus.RESERVED.value
                connector.current_booking_id = booking.id

        return booking, connector

    async def _release_quietly(self, hold_token: str) -> None:
        try:
            await self.hold_store.release_hold(hold_token)
        except BookingError as e:
            logger.error("hold_release_after_confirm_failed token=%s err=%s", hold_token, e)

    # --- cancel ---

    async def cancel_booking(self, booking_id: int, user_id: Optional[int]) -> Booking:
        async with self.session_factory() as db:
            async with db.begin():
                booking = await queries.get_booking(db, booking_id, for_update=True)
                if not booking:
                    raise BookingNotFound(f"Booking {booking_id} not found")
                if user_id is not None and booking.user_id != int(user_id):
                    raise Unauthorized("Booking belongs to another user")
                if booking.status not in CANCELLABLE_STATUSES:
                    raise InvalidState(f"Booking cannot be cancelled in status {booking.status}", status=booking.status)

                booking.status = BookingStatus.CANCELLED.value
                freed = await self.free_connector(db, booking.connector_id, booking.id)

        if freed is not None:
            await self.sync_connector_state(
                booking.station_id,
                freed.id,
                ConnectorStatus.AVAILABLE.value,
                vendor_connector_id=freed.vendor_connector_id,
            )
        await self.events.station_update(
            booking.station_id,
            EventType.BOOKING_CANCELLED,
            {"booking_id": booking.id, "connector_id": booking.connector_id, "status": booking.status},
        )
        await self.availability.invalidate(booking.station_id)

        logger.info("booking_cancelled id=%s user_id=%s", booking.id, booking.user_id)
        return booking

    # --- közös connector helperek (no-show, vendor is használja) ---

    async def free_connector(self, db: AsyncSession, connector_id: int, booking_id: Optional[int]) -> Optional[Connector]:
        """
        Tranzakción belül AVAILABLE-re állítja a connectort, ha ez a booking tartja
        (vagy RESERVED hivatkozás nélkül). Más booking / vendor session connectorát nem bántja.
        """
        connector = await queries.get_connector(db, connector_id, for_update=True)
        if not connector:
            return None

        held_by_us = booking_id is not None and connector.current_booking_id == booking_id
        orphan_reserved = connector.current_booking_id is None and connector.status == ConnectorStatus.RESERVED.value
        if not (held_by_us or orphan_reserved):
            return None

        connector.status = ConnectorStatus.AVAILABLE.value
        connector.current_booking_id = None
        return connector

    async def sync_connector_state(
        self,
        station_id: int,
        connector_id: int,
        status: str,
        booking_id: Optional[int] = None,
        vendor_connector_id: Optional[str] = None,
        publish: bool = True,
    ) -> None:
        """
        Commit utáni best-effort lépések: projection, event, availability cache.
        """
        try:
            await self.projection.update_connector_status(
                station_id,
                connector_id,
                status,
                booking_id=booking_id,
                vendor_connector_id=vendor_connector_id,
            )
        except RedisError as e:
            logger.error(
                "connector_projection_update_failed station_id=%s connector_id=%s err=%s", station_id, connector_id, e
            )
        if publish:
            await self.events.connector_status_changed(station_id, connector_id, status, booking_id)
        await self.availability.invalidate(station_id)

    # --- olvasás ---

    async def get_user_bookings(
        self,
        user_id: int,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Booking]:
        if status is not None and status not in {s.value for s in BookingStatus}:
            raise ValidationFailed(f"unknown booking status: {status}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationFailed(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationFailed("offset must be >= 0")

        async with self.session_factory() as db:
            return await queries.list_user_bookings(db, user_id, status=status, limit=limit, offset=offset)

    async def get_booking(self, booking_id: int, user_id: Optional[int]) -> Booking:
        async with self.session_factory() as db:
            booking = await queries.get_booking(db, booking_id)
        if not booking:
            raise BookingNotFound(f"Booking {booking_id} not found")
        if user_id is not None and booking.user_id != int(user_id):
            raise Unauthorized("Booking belongs to another user")
        return booking
