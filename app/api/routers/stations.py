from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_services
from app.core.container import Services
from app.core.errors import StationNotFound
from app.db import queries

router = APIRouter(prefix="/stations", tags=["stations"])


@router.get("/{station_id}", response_model=dict)
async def get_station(
    station_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    station = await queries.get_station(db, station_id)
    if not station:
        raise StationNotFound(f"Station {station_id} not found")

    connectors = await queries.list_station_connectors(db, station_id)
    live = {s.connector_id: s for s in await services.projection.get_station_connectors(station_id)}

    items = []
    for c in connectors:
        state = live.get(c.id)
        items.append(
            {
                "id": c.id,
                "connector_number": c.connector_number,
                "connector_type": c.connector_type,
                "power_kw": c.power_kw,
                # élő cache felülírja, miss esetén a DB az igazság
                "status": state.status if state else c.status,
                "status_source": "live" if state else "db",
                "current_booking_id": state.booking_id if state else c.current_booking_id,
                "vendor_connector_id": c.vendor_connector_id,
                "updated_at": state.updated_at if state else None,
            }
        )

    return {
        "id": station.id,
        "name": station.name,
        "address": station.address,
        "city": station.city,
        "connectors": items,
    }


@router.get("/{station_id}/availability", response_model=dict)
async def get_availability(
    station_id: int,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    slot_duration_minutes: Optional[int] = Query(None, ge=15, le=480),
    services: Services = Depends(get_services),
):
    slots = await services.availability.compute_available_slots(
        station_id,
        window_start=start_date,
        window_end=end_date,
        slot_duration_minutes=slot_duration_minutes,
    )
    return {
        "station_id": station_id,
        "slots": [s.model_dump(mode="json") for s in slots],
        "total": len(slots),
    }
