from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.deps import get_current_user_id, get_services
from app.core.container import Services
from app.core.time_utils import iso_utc_z
from app.db.models import Booking

logger = logging.getLogger("api")

router = APIRouter(prefix="/bookings", tags=["bookings"])


class CreateHoldIn(BaseModel):
    station_id: int = Field(..., ge=1)
    connector_id: int = Field(..., ge=1)
    start_ts: datetime
    end_ts: datetime


class ConfirmBookingIn(BaseModel):
    hold_token: str = Field(..., min_length=1, max_length=255)
    payment_id: Optional[str] = Field(None, max_length=255)


def booking_out(b: Booking) -> dict:
    return {
        "id": b.id,
        "user_id": b.user_id,
        "station_id": b.station_id,
        "connector_id": b.connector_id,
        "start_ts": iso_utc_z(b.start_ts),
        "end_ts": iso_utc_z(b.end_ts),
        "status": b.status,
        "payment_id": b.payment_id,
        "payment_status": b.payment_status,
        "vendor_booking_id": b.vendor_booking_id,
        "vendor_sync_status": b.vendor_sync_status,
        "created_at": iso_utc_z(b.created_at) if b.created_at else None,
    }


@router.post("/holds", status_code=201, response_model=dict)
async def create_hold(
    body: CreateHoldIn,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    result = await services.orchestrator.create_hold(
        body.station_id,
        body.connector_id,
        body.start_ts,
        body.end_ts,
        user_id,
    )
    return {
        "token": result.token,
        "expires_in": result.expires_in,
        "station_id": body.station_id,
        "connector_id": body.connector_id,
        "start_ts": iso_utc_z(body.start_ts),
        "end_ts": iso_utc_z(body.end_ts),
    }


@router.post("/confirm", status_code=201, response_model=dict)
async def confirm_booking(
    body: ConfirmBookingIn,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.orchestrator.confirm_booking(body.hold_token, user_id, body.payment_id)
    return booking_out(booking)


@router.post("/{booking_id}/cancel", response_model=dict)
async def cancel_booking(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.orchestrator.cancel_booking(booking_id, user_id)
    return {"id": booking.id, "status": booking.status}


@router.get("/", response_model=dict)
async def list_bookings(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    items = await services.orchestrator.get_user_bookings(user_id, status=status, limit=limit, offset=offset)
    return {
        "items": [booking_out(b) for b in items],
        "limit": limit,
        "offset": offset,
    }


@router.get("/{booking_id}", response_model=dict)
async def get_booking(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    return booking_out(await services.orchestrator.get_booking(booking_id, user_id))
