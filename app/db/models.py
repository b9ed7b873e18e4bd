import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Integer,
    String,
    DateTime,
    Float,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, JSONType, TimestampMixin


class ConnectorStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"
    OFFLINE = "OFFLINE"
    FAULTED = "FAULTED"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class SessionStatus(str, enum.Enum):
    STARTING = "STARTING"
    CHARGING = "CHARGING"
    STOPPING = "STOPPING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class VendorSyncStatus(str, enum.Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    ACKED = "ACKED"


# overlap szempontjából "élő" foglalások
BLOCKING_BOOKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value)
# hold létrehozásakor a PENDING is ütközik
HOLD_BLOCKING_BOOKING_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ACTIVE.value,
)
# ide nem lehet hold-ot tenni, és az availability is kihagyja
OUT_OF_SERVICE_STATUSES = (ConnectorStatus.OFFLINE.value, ConnectorStatus.MAINTENANCE.value)


def _in_list(column: str, enum_cls) -> str:
    values = ", ".join(f"'{m.value}'" for m in enum_cls)
    return f"{column} IN ({values})"


class Station(TimestampMixin, Base):
    __tablename__ = "charging_stations"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)

    connectors = relationship(
        "Connector",
        back_populates="station",
        order_by="Connector.connector_number",
    )


class Connector(TimestampMixin, Base):
    __tablename__ = "connectors"
    __table_args__ = (
        UniqueConstraint("station_id", "connector_number", name="uq_connectors_station_number"),
        CheckConstraint(_in_list("status", ConnectorStatus), name="status"),
    )

    id = Column(Integer, primary_key=True)

    station_id = Column(
        Integer,
        ForeignKey("charging_stations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    connector_number = Column(Integer, nullable=False)
    connector_type = Column(String(50), nullable=False)  # pl. CCS2, Type2, CHAdeMO
    power_kw = Column(Float, nullable=False)

    status = Column(String(20), nullable=False, default=ConnectorStatus.AVAILABLE.value)
    # csak booking miatti RESERVED/OCCUPIED esetén van kitöltve
    current_booking_id = Column(Integer, nullable=True)

    vendor_connector_id = Column(String(100), nullable=True, index=True)
    meta = Column("metadata", JSONType, nullable=True)

    station = relationship("Station", back_populates="connectors")


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("end_ts > start_ts", name="valid_time_range"),
        CheckConstraint(_in_list("status", BookingStatus), name="status"),
        CheckConstraint(_in_list("payment_status", PaymentStatus), name="payment_status"),
        CheckConstraint(_in_list("vendor_sync_status", VendorSyncStatus), name="vendor_sync_status"),
        Index("ix_bookings_connector_time", "connector_id", "start_ts", "end_ts"),
        Index("ix_bookings_status_start", "status", "start_ts"),
    )

    id = Column(Integer, primary_key=True)

    user_id = Column(Integer, nullable=False, index=True)
    station_id = Column(
        Integer,
        ForeignKey("charging_stations.id", ondelete="CASCADE"),
        nullable=False,
    )
    connector_id = Column(
        Integer,
        ForeignKey("connectors.id", ondelete="CASCADE"),
        nullable=False,
    )

    start_ts = Column(DateTime(timezone=True), nullable=False)
    end_ts = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    hold_token = Column(String(255), nullable=True, unique=True)

    payment_id = Column(String(255), nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    vendor_booking_id = Column(String(255), nullable=True, index=True)
    vendor_sync_status = Column(String(20), nullable=False, default=VendorSyncStatus.PENDING.value)

    meta = Column("metadata", JSONType, nullable=True)

    connector = relationship("Connector")


class ChargingSession(TimestampMixin, Base):
    __tablename__ = "charging_sessions"
    __table_args__ = (
        CheckConstraint(_in_list("status", SessionStatus), name="status"),
    )

    id = Column(Integer, primary_key=True)

    # vendor eventből booking nélkül is indulhat session
    booking_id = Column(
        Integer,
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user_id = Column(Integer, nullable=True)
    station_id = Column(Integer, nullable=True)
    connector_id = Column(
        Integer,
        ForeignKey("connectors.id", ondelete="CASCADE"),
        nullable=False,
    )

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    start_meter_reading = Column(Float, nullable=True)  # kWh
    end_meter_reading = Column(Float, nullable=True)
    energy_kwh = Column(Float, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    cost_amount = Column(Float, nullable=True)
    cost_currency = Column(String(3), nullable=False, default="INR")

    status = Column(String(20), nullable=False, default=SessionStatus.STARTING.value)
    vendor_session_id = Column(String(255), nullable=True, index=True)
    meter_data = Column(JSONType, nullable=True)

    booking = relationship("Booking")
