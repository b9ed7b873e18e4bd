# app/booking/availability.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.booking.connector_status import ConnectorStatusProjection
from app.booking.hold_store import HoldStore
from app.core.config import Settings, settings as default_settings
from app.core.errors import StationNotFound, ValidationFailed
from app.core.time_utils import as_utc, from_epoch, to_epoch, utcnow
from app.db import queries
from app.db.models import ConnectorStatus, OUT_OF_SERVICE_STATUSES

logger = logging.getLogger("booking.availability")

MIN_SLOT_MINUTES = 15
MAX_SLOT_MINUTES = 480

_LIVE_BLOCKING = (ConnectorStatus.OCCUPIED.value, ConnectorStatus.RESERVED.value)


class Slot(BaseModel):
    connector_id: int
    connector_number: int
    connector_type: str
    power_kw: float
    start: datetime
    end: datetime
    duration_minutes: int


def _overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


class AvailabilityCalculator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis,
        hold_store: HoldStore,
        projection: ConnectorStatusProjection,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session_factory = session_factory
        self.redis = redis
        self.hold_store = hold_store
        self.projection = projection
        self.settings = settings or default_settings
        self.key_prefix = self.settings.redis_key_prefix

    def cache_key(self, station_id: int, start: datetime, end: datetime, slot_minutes: int) -> str:
        return (
            f"{self.key_prefix}availability:{station_id}:"
            f"{to_epoch(start) // 60}:{to_epoch(end) // 60}:{slot_minutes}"
        )

    def _resolve_window(
        self,
        window_start: Optional[datetime],
        window_end: Optional[datetime],
        slot_duration_minutes: Optional[int],
        now: datetime,
    ) -> Tuple[datetime, datetime, int]:
        start = as_utc(window_start) or now
        end = as_utc(window_end) or start + timedelta(hours=self.settings.availability_default_window_hours)
        slot_minutes = int(slot_duration_minutes or self.settings.availability_default_slot_minutes)

        if end <= start:
            raise ValidationFailed("window end must be after window start")
        if not MIN_SLOT_MINUTES <= slot_minutes <= MAX_SLOT_MINUTES:
            raise ValidationFailed(
                f"slot duration must be between {MIN_SLOT_MINUTES} and {MAX_SLOT_MINUTES} minutes"
            )
        return start, end, slot_minutes

    async def compute_available_slots(
        self,
        station_id: int,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        slot_duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Slot]:
        now = as_utc(now) or utcnow()
        start, end, slot_minutes = self._resolve_window(window_start, window_end, slot_duration_minutes, now)

        key = self.cache_key(station_id, start, end, slot_minutes)
        cached = await self._read_cache(key)
        if cached is not None:
            return cached

        async with self.session_factory() as db:
            station = await queries.get_station(db, station_id)
            if not station:
                raise StationNotFound(f"Station {station_id} not found")
            connectors = await queries.list_station_connectors(db, station_id)
            bookings = await queries.list_overlapping_bookings(db, [c.id for c in connectors], start, end)

        busy: Dict[int, List[Tuple[datetime, datetime]]] = {}
        for b in bookings:
            busy.setdefault(b.connector_id, []).append((as_utc(b.start_ts), as_utc(b.end_ts)))

        lookahead = timedelta(minutes=self.settings.availability_occupied_lookahead_minutes)
        step = timedelta(minutes=slot_minutes)
        slots: List[Slot] = []

        for connector in connectors:
            if connector.status in OUT_OF_SERVICE_STATUSES:
                continue

            ranges = list(busy.get(connector.id, []))
            for hold_start, hold_end in await self.hold_store.get_connector_hold_windows(connector.id):
                ranges.append((from_epoch(hold_start), from_epoch(hold_end)))

            live = await self.projection.get_connector_status(station_id, connector.id)
            live_blocking = live is not None and live.status in _LIVE_BLOCKING

            slot_start = start
            while slot_start + step <= end:
                slot_end = slot_start + step
                taken = any(_overlaps(slot_start, slot_end, r_start, r_end) for r_start, r_end in ranges)
                if not taken and live_blocking and slot_start - now < lookahead:
                    taken = True

                if not taken:
                    slots.append(
                        Slot(
                            connector_id=connector.id,
                            connector_number=connector.connector_number,
                            connector_type=connector.connector_type,
                            power_kw=connector.power_kw,
                            start=slot_start,
                            end=slot_end,
                            duration_minutes=slot_minutes,
                        )
                    )
                slot_start = slot_end

        await self._write_cache(key, slots)
        return slots

    async def _read_cache(self, key: str) -> Optional[List[Slot]]:
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            logger.warning("availability_cache_read_failed key=%s err=%s", key, e)
            return None
        if raw is None:
            return None
        try:
            return [Slot.model_validate(item) for item in json.loads(raw)]
        except ValueError:
            logger.warning("availability_cache_corrupt key=%s", key)
            return None

    async def _write_cache(self, key: str, slots: List[Slot]) -> None:
        payload = json.dumps([s.model_dump(mode="json") for s in slots])
        try:
            await self.redis.set(key, payload, ex=self.settings.availability_cache_ttl_seconds)
        except RedisError as e:
            logger.warning("availability_cache_write_failed key=%s err=%s", key, e)

    async def invalidate(self, station_id: int) -> int:
        """
        A station összes availability kulcsát törli (best-effort).
        """
        deleted = 0
        try:
            async for key in self.redis.scan_iter(match=f"{self.key_prefix}availability:{station_id}:*", count=100):
                deleted += int(await self.redis.delete(key) or 0)
        except RedisError as e:
            logger.warning("availability_invalidate_failed station_id=%s err=%s", station_id, e)
        return deleted
