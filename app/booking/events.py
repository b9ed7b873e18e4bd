# app/booking/events.py
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from app.core.config import settings
from app.core.time_utils import iso_utc_z, utcnow

logger = logging.getLogger("booking.events")


class EventType:
    CONNECTOR_STATUS_UPDATE = "connector_status_update"
    SLOT_HOLD_CREATED = "slot_hold_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    CONNECTOR_FREED = "connector_freed"
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return iso_utc_z(dt) if dt else None


class EventPublisher:
    """
    Fire-and-forget Redis PUBLISH. Hiba soha nem megy vissza a hívóhoz,
    a WebSocket bridge kiesése nem állíthat meg egy foglalást.
    """

    def __init__(self, redis, timeout_seconds: Optional[float] = None, key_prefix: Optional[str] = None) -> None:
        self.redis = redis
        self.timeout_seconds = float(timeout_seconds or settings.event_publish_timeout_seconds)
        self.key_prefix = settings.redis_key_prefix if key_prefix is None else key_prefix

    def station_channel(self, station_id: int) -> str:
        return f"{self.key_prefix}station_updates:{station_id}"

    def connector_channel(self, station_id: int) -> str:
        return f"{self.key_prefix}connector_status_update:{station_id}"

    @staticmethod
    def build_event(event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {"type": event_type, "timestamp": iso_utc_z(utcnow()), "data": data}

    async def publish(self, channel: str, event: Dict[str, Any]) -> int:
        try:
            receivers = await asyncio.wait_for(
                self.redis.publish(channel, json.dumps(event)),
                timeout=self.timeout_seconds,
            )
            return int(receivers or 0)
        except asyncio.TimeoutError:
            logger.warning("event_publish_timeout channel=%s type=%s", channel, event.get("type"))
        except Exception:
            logger.exception("event_publish_failed channel=%s type=%s", channel, event.get("type"))
        return 0

    # --- típusos helperek ---

    async def connector_status_changed(
        self,
        station_id: int,
        connector_id: int,
        status: str,
        booking_id: Optional[int] = None,
    ) -> int:
        event = self.build_event(
            EventType.CONNECTOR_STATUS_UPDATE,
            {
                "station_id": station_id,
                "connector_id": connector_id,
                "status": status,
                "booking_id": booking_id,
            },
        )
        return await self.publish(self.connector_channel(station_id), event)

    async def hold_created(
        self,
        station_id: int,
        connector_id: int,
        start: datetime,
        end: datetime,
        expires_in: int,
    ) -> int:
        event = self.build_event(
            EventType.SLOT_HOLD_CREATED,
            {
                "station_id": station_id,
                "connector_id": connector_id,
                "start": _iso(start),
                "end": _iso(end),
                "expires_in": expires_in,
            },
        )
        return await self.publish(self.station_channel(station_id), event)

    async def booking_confirmed(
        self,
        station_id: int,
        connector_id: int,
        booking_id: int,
        start: datetime,
        end: datetime,
    ) -> int:
        event = self.build_event(
            EventType.BOOKING_CONFIRMED,
            {
                "station_id": station_id,
                "connector_id": connector_id,
                "booking_id": booking_id,
                "status": "RESERVED",
                "start": _iso(start),
                "end": _iso(end),
            },
        )
        return await self.publish(self.station_channel(station_id), event)

    async def session_started(
        self,
        station_id: int,
        connector_id: int,
        session_id: int,
        booking_id: Optional[int] = None,
    ) -> int:
        event = self.build_event(
            EventType.SESSION_STARTED,
            {
                "station_id": station_id,
                "connector_id": connector_id,
                "session_id": session_id,
                "booking_id": booking_id,
                "status": "OCCUPIED",
            },
        )
        return await self.publish(self.station_channel(station_id), event)

    async def session_ended(
        self,
        station_id: int,
        connector_id: int,
        session_id: int,
        energy_kwh: Optional[float] = None,
        booking_id: Optional[int] = None,
    ) -> int:
        event = self.build_event(
            EventType.SESSION_ENDED,
            {
                "station_id": station_id,
                "connector_id": connector_id,
                "session_id": session_id,
                "booking_id": booking_id,
                "energy_kwh": energy_kwh,
                "status": "AVAILABLE",
            },
        )
        return await self.publish(self.station_channel(station_id), event)

    async def station_update(self, station_id: int, event_type: str, data: Dict[str, Any]) -> int:
        payload = {"station_id": station_id}
        payload.update(data)
        return await self.publish(self.station_channel(station_id), self.build_event(event_type, payload))
