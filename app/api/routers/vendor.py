from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.api.deps import get_services
from app.core.container import Services
from app.core.time_utils import parse_timestamp
from app.vendor.parsers import _as_float, _as_int, _as_str


router = APIRouter(prefix="/vendor/webhooks", tags=["vendor"])


class _VendorIn(BaseModel):
    # vendor camelCase-t küld, tesztből snake_case is jöhet
    model_config = ConfigDict(populate_by_name=True)


class ConnectorStatusIn(_VendorIn):
    station_id: Optional[int] = Field(None, alias="stationId")
    connector_id: Optional[int] = Field(None, alias="connectorId")
    vendor_connector_id: Optional[str] = Field(None, alias="vendorConnectorId")
    status: str = Field(..., min_length=1)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("station_id", "connector_id", mode="before")
    @classmethod
    def _ints(cls, v):
        return _as_int(v)

    @field_validator("vendor_connector_id", mode="before")
    @classmethod
    def _strs(cls, v):
        return _as_str(v)


class BookingNotificationIn(_VendorIn):
    vendor_booking_id: str = Field(..., alias="vendorBookingId", min_length=1)
    status: str = Field(..., min_length=1)
    vendor_connector_id: Optional[str] = Field(None, alias="vendorConnectorId")

    @field_validator("vendor_booking_id", "vendor_connector_id", mode="before")
    @classmethod
    def _strs(cls, v):
        return _as_str(v)


class SessionStartIn(_VendorIn):
    vendor_session_id: Optional[str] = Field(None, alias="vendorSessionId")
    station_id: Optional[int] = Field(None, alias="stationId")
    connector_id: Optional[int] = Field(None, alias="connectorId")
    vendor_connector_id: Optional[str] = Field(None, alias="vendorConnectorId")
    booking_id: Optional[int] = Field(None, alias="bookingId")
    user_id: Optional[int] = Field(None, alias="userId")
    start_meter_reading: Optional[float] = Field(None, alias="startMeterReading")
    timestamp: Optional[datetime] = None

    @field_validator("station_id", "connector_id", "booking_id", "user_id", mode="before")
    @classmethod
    def _ints(cls, v):
        return _as_int(v)

    @field_validator("vendor_session_id", "vendor_connector_id", mode="before")
    @classmethod
    def _strs(cls, v):
        return _as_str(v)

    @field_validator("start_meter_reading", mode="before")
    @classmethod
    def _floats(cls, v):
        return _as_float(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ts(cls, v):
        return parse_timestamp(v)


class SessionEndIn(_VendorIn):
    vendor_session_id: Optional[str] = Field(None, alias="vendorSessionId")
    session_id: Optional[int] = Field(None, alias="sessionId")
    end_meter_reading: Optional[float] = Field(None, alias="endMeterReading")
    energy_kwh: Optional[float] = Field(None, alias="energyKwh")
    cost_amount: Optional[float] = Field(None, alias="costAmount")
    cost_currency: Optional[str] = Field(None, alias="costCurrency", max_length=3)
    meter_data: Optional[Dict[str, Any]] = Field(None, alias="meterData")
    timestamp: Optional[datetime] = None

    @field_validator("session_id", mode="before")
    @classmethod
    def _ints(cls, v):
        return _as_int(v)

    @field_validator("vendor_session_id", mode="before")
    @classmethod
    def _strs(cls, v):
        return _as_str(v)

    @field_validator("end_meter_reading", "energy_kwh", "cost_amount", mode="before")
    @classmethod
    def _floats(cls, v):
        return _as_float(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ts(cls, v):
        return parse_timestamp(v)


@router.post("/connector-status", response_model=dict)
async def connector_status(body: ConnectorStatusIn, services: Services = Depends(get_services)):
    return await services.vendor.process_connector_status_update(
        body.status,
        station_id=body.station_id,
        connector_id=body.connector_id,
        vendor_connector_id=body.vendor_connector_id,
        metadata=body.metadata,
    )


@router.post("/booking-notification", response_model=dict)
async def booking_notification(body: BookingNotificationIn, services: Services = Depends(get_services)):
    return await services.vendor.process_vendor_booking_notification(
        body.vendor_booking_id,
        body.status,
        vendor_connector_id=body.vendor_connector_id,
    )


@router.post("/session-start", response_model=dict)
async def session_start(body: SessionStartIn, services: Services = Depends(get_services)):
    return await services.vendor.process_session_start(
        body.vendor_session_id,
        connector_id=body.connector_id,
        vendor_connector_id=body.vendor_connector_id,
        station_id=body.station_id,
        start_meter_reading=body.start_meter_reading,
        booking_id=body.booking_id,
        user_id=body.user_id,
        started_at=body.timestamp,
    )


@router.post("/session-end", response_model=dict)
async def session_end(body: SessionEndIn, services: Services = Depends(get_services)):
    return await services.vendor.process_session_end(
        vendor_session_id=body.vendor_session_id,
        session_id=body.session_id,
        end_meter_reading=body.end_meter_reading,
        energy_kwh=body.energy_kwh,
        cost_amount=body.cost_amount,
        cost_currency=body.cost_currency,
        ended_at=body.timestamp,
        meter_data=body.meter_data,
    )
