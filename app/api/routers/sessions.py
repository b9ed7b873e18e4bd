from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_db
from app.core.errors import SessionNotFound, Unauthorized
from app.core.time_utils import iso_utc_z
from app.db import queries

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/{session_id}", response_model=dict)
async def get_session(
    session_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    s = await queries.get_charging_session(db, session_id)
    if not s:
        raise SessionNotFound(f"Session {session_id} not found")
    if s.user_id is not None and s.user_id != user_id:
        raise Unauthorized("Session belongs to another user")

    return {
        "id": s.id,
        "booking_id": s.booking_id,
        "station_id": s.station_id,
        "connector_id": s.connector_id,
        "vendor_session_id": s.vendor_session_id,
        "status": s.status,
        "started_at": iso_utc_z(s.started_at),
        "ended_at": iso_utc_z(s.ended_at) if s.ended_at else None,
        "start_meter_reading": s.start_meter_reading,
        "end_meter_reading": s.end_meter_reading,
        "energy_kwh": s.energy_kwh,
        "duration_minutes": s.duration_minutes,
        "cost_amount": s.cost_amount,
        "cost_currency": s.cost_currency,
    }
