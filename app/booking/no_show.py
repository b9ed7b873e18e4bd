# app/booking/no_show.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.booking.events import EventType
from app.booking.orchestrator import BookingOrchestrator
from app.core.config import Settings, settings as default_settings
from app.core.time_utils import as_utc, utcnow
from app.db import queries
from app.db.models import Booking, BookingStatus, ConnectorStatus

logger = logging.getLogger("booking.no_show")

NoShowHook = Callable[[Booking], Awaitable[None]]


class NoShowReconciler:
    """
    Időzített worker: a türelmi időn túl el nem indított CONFIRMED foglalásokat
    NO_SHOW-ra állítja és felszabadítja a connectort.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: BookingOrchestrator,
        settings: Optional[Settings] = None,
        on_no_show: Optional[NoShowHook] = None,
    ) -> None:
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.settings = settings or default_settings
        # fizetés visszatérítés / részleges terhelés ide köthető be
        self.on_no_show = on_no_show

        self.grace = timedelta(minutes=self.settings.no_show_grace_period_minutes)
        self.lookback = timedelta(minutes=self.settings.no_show_lookback_minutes)
        self.interval_seconds = float(self.settings.no_show_interval_seconds)

        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) or utcnow()

        async with self.session_factory() as db:
            candidate_ids = await queries.list_no_show_candidates(db, now, self.grace, self.lookback)

        if not candidate_ids:
            return 0

        logger.info("no_show_candidates count=%s", len(candidate_ids))
        processed = 0
        for booking_id in candidate_ids:
            try:
                if await self._mark_no_show(booking_id):
                    processed += 1
            except Exception:
                # egy rossz rekord nem állítja meg a batch-et
                logger.exception("no_show_failed booking_id=%s", booking_id)
        return processed

    async def _mark_no_show(self, booking_id: int) -> bool:
        async with self.session_factory() as db:
            async with db.begin():
                booking = await queries.get_booking(db, booking_id, for_update=True, skip_locked=True)
                # közben elindult / lemondták / másik instance már feldolgozta
                if booking is None or booking.status != BookingStatus.CONFIRMED.value:
                    return False

                booking.status = BookingStatus.NO_SHOW.value
                freed = await self.orchestrator.free_connector(db, booking.connector_id, booking.id)

        logger.info(
            "booking_no_show id=%s user_id=%s connector_id=%s start=%s",
            booking.id,
            booking.user_id,
            booking.connector_id,
            as_utc(booking.start_ts).isoformat(),
        )

        if freed is not None:
            await self.orchestrator.sync_connector_state(
                booking.station_id,
                freed.id,
                ConnectorStatus.AVAILABLE.value,
                vendor_connector_id=freed.vendor_connector_id,
                publish=False,
            )
        else:
            await self.orchestrator.availability.invalidate(booking.station_id)

        await self.orchestrator.events.station_update(
            booking.station_id,
            EventType.CONNECTOR_FREED,
            {"connector_id": booking.connector_id, "booking_id": booking.id, "reason": "NO_SHOW"},
        )

        if self.on_no_show is not None:
            try:
                await self.on_no_show(booking)
            except Exception:
                logger.exception("no_show_hook_failed booking_id=%s", booking.id)
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("no_show_worker_started interval=%ss grace=%s", self.interval_seconds, self.grace)
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("no_show_pass_failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("no_show_worker_stopped")

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event), name="no-show-reconciler")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop_event = None
