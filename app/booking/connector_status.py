# app/booking/connector_status.py
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from redis.exceptions import RedisError

from app.core.config import settings
from app.core.time_utils import iso_utc_z, utcnow

logger = logging.getLogger("booking.connectors")


@dataclass
class ConnectorState:
    connector_id: int
    status: str
    updated_at: str
    booking_id: Optional[int] = None
    vendor_connector_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConnectorStatusUpdate:
    station_id: int
    connector_id: int
    status: str
    booking_id: Optional[int] = None
    vendor_connector_id: Optional[str] = None


def _opt_int(v: Any) -> Optional[int]:
    if v in (None, ""):
        return None
    return int(v)


class ConnectorStatusProjection:
    """
    Connector élő státusz cache. Miss = "nem tudjuk", nem AVAILABLE.
    """

    def __init__(self, redis, ttl_seconds: Optional[int] = None, key_prefix: Optional[str] = None) -> None:
        self.redis = redis
        self.ttl_seconds = int(ttl_seconds or settings.connector_status_ttl_seconds)
        self.key_prefix = settings.redis_key_prefix if key_prefix is None else key_prefix

    def connector_key(self, station_id: int, connector_id: int) -> str:
        return f"{self.key_prefix}station:{station_id}:connectors:{connector_id}"

    def station_key(self, station_id: int) -> str:
        return f"{self.key_prefix}station:{station_id}:connectors"

    def _queue_update(self, pipe, update: ConnectorStatusUpdate) -> ConnectorState:
        state = ConnectorState(
            connector_id=int(update.connector_id),
            status=update.status,
            updated_at=iso_utc_z(utcnow()),
            booking_id=update.booking_id,
            vendor_connector_id=update.vendor_connector_id,
        )
        ckey = self.connector_key(update.station_id, update.connector_id)
        skey = self.station_key(update.station_id)

        # hash-be None nem mehet, üres stringként tároljuk
        mapping = {k: ("" if v is None else v) for k, v in state.to_dict().items()}
        pipe.delete(ckey)
        pipe.hset(ckey, mapping=mapping)
        pipe.expire(ckey, self.ttl_seconds)
        pipe.hset(skey, str(update.connector_id), json.dumps(state.to_dict()))
        pipe.expire(skey, self.ttl_seconds)
        return state

    async def update_connector_status(
        self,
        station_id: int,
        connector_id: int,
        status: str,
        booking_id: Optional[int] = None,
        vendor_connector_id: Optional[str] = None,
    ) -> ConnectorState:
        update = ConnectorStatusUpdate(station_id, connector_id, status, booking_id, vendor_connector_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            state = self._queue_update(pipe, update)
            await pipe.execute()
        logger.debug("connector_status_cached station_id=%s connector_id=%s status=%s", station_id, connector_id, status)
        return state

    async def batch_update_connector_statuses(self, updates: Iterable[ConnectorStatusUpdate]) -> int:
        items = list(updates)
        if not items:
            return 0
        async with self.redis.pipeline(transaction=False) as pipe:
            for update in items:
                self._queue_update(pipe, update)
            await pipe.execute()
        logger.info("connector_status_batch_cached count=%s", len(items))
        return len(items)

    async def get_connector_status(self, station_id: int, connector_id: int) -> Optional[ConnectorState]:
        try:
            data = await self.redis.hgetall(self.connector_key(station_id, connector_id))
        except RedisError as e:
            logger.warning("connector_status_read_failed station_id=%s connector_id=%s err=%s", station_id, connector_id, e)
            return None

        if not data or not data.get("status"):
            return None
        return ConnectorState(
            connector_id=int(data.get("connector_id") or connector_id),
            status=data["status"],
            updated_at=data.get("updated_at") or "",
            booking_id=_opt_int(data.get("booking_id")),
            vendor_connector_id=data.get("vendor_connector_id") or None,
        )

    async def get_station_connectors(self, station_id: int) -> List[ConnectorState]:
        try:
            raw = await self.redis.hgetall(self.station_key(station_id))
        except RedisError as e:
            logger.warning("station_connectors_read_failed station_id=%s err=%s", station_id, e)
            return []

        states: List[ConnectorState] = []
        for value in (raw or {}).values():
            try:
                states.append(ConnectorState(**json.loads(value)))
            except (TypeError, ValueError):
                logger.warning("station_connectors_bad_entry station_id=%s value=%r", station_id, value)
        states.sort(key=lambda s: s.connector_id)
        return states
