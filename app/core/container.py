# app/core/container.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.booking.availability import AvailabilityCalculator
from app.booking.connector_status import ConnectorStatusProjection
from app.booking.events import EventPublisher
from app.booking.hold_store import HoldStore
from app.booking.no_show import NoShowReconciler
from app.booking.orchestrator import BookingOrchestrator
from app.core.config import Settings, settings as default_settings
from app.vendor.adapter import VendorAdapter


@dataclass
class Services:
    settings: Settings
    redis: object
    session_factory: async_sessionmaker[AsyncSession]
    holds: HoldStore
    projection: ConnectorStatusProjection
    availability: AvailabilityCalculator
    events: EventPublisher
    orchestrator: BookingOrchestrator
    no_show: NoShowReconciler
    vendor: VendorAdapter


def build_services(
    redis,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
) -> Services:
    """
    Egyszer, process induláskor; tesztben fake redis / sqlite factory-val.
    """
    cfg = settings or default_settings
    prefix = cfg.redis_key_prefix

    holds = HoldStore(redis, ttl_seconds=cfg.booking_hold_ttl_seconds, key_prefix=prefix)
    projection = ConnectorStatusProjection(redis, ttl_seconds=cfg.connector_status_ttl_seconds, key_prefix=prefix)
    events = EventPublisher(redis, timeout_seconds=cfg.event_publish_timeout_seconds, key_prefix=prefix)
    availability = AvailabilityCalculator(session_factory, redis, holds, projection, settings=cfg)
    orchestrator = BookingOrchestrator(session_factory, holds, projection, availability, events)
    no_show = NoShowReconciler(session_factory, orchestrator, settings=cfg)
    vendor = VendorAdapter(session_factory, orchestrator, events)

    return Services(
        settings=cfg,
        redis=redis,
        session_factory=session_factory,
        holds=holds,
        projection=projection,
        availability=availability,
        events=events,
        orchestrator=orchestrator,
        no_show=no_show,
        vendor=vendor,
    )
