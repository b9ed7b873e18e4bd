"""create stations, connectors, bookings, charging_sessions

Revision ID: 1f3c9a2b7d10
Revises:
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "1f3c9a2b7d10"
down_revision = None
branch_labels = None
depends_on = None


CONNECTOR_STATUSES = "'AVAILABLE', 'OCCUPIED', 'RESERVED', 'MAINTENANCE', 'OFFLINE', 'FAULTED'"
BOOKING_STATUSES = "'PENDING', 'CONFIRMED', 'ACTIVE', 'COMPLETED', 'CANCELLED', 'NO_SHOW'"
PAYMENT_STATUSES = "'PENDING', 'AUTHORIZED', 'CAPTURED', 'REFUNDED', 'FAILED'"
VENDOR_SYNC_STATUSES = "'PENDING', 'SYNCED', 'FAILED', 'ACKED'"
SESSION_STATUSES = "'STARTING', 'CHARGING', 'STOPPING', 'COMPLETED', 'FAILED', 'CANCELLED'"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # EXCLUDE-ban az "=" operátor integerre ebből jön
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "charging_stations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "connectors",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("station_id", sa.Integer(), sa.ForeignKey("charging_stations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("connector_number", sa.Integer(), nullable=False),
        sa.Column("connector_type", sa.String(length=50), nullable=False),
        sa.Column("power_kw", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="AVAILABLE"),
        sa.Column("current_booking_id", sa.Integer(), nullable=True),
        sa.Column("vendor_connector_id", sa.String(length=100), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("station_id", "connector_number", name="uq_connectors_station_number"),
        sa.CheckConstraint(f"status IN ({CONNECTOR_STATUSES})", name="ck_connectors_status"),
    )
    op.create_index("ix_connectors_station_id", "connectors", ["station_id"])
    op.create_index("ix_connectors_vendor_connector_id", "connectors", ["vendor_connector_id"])
    op.create_index("ix_connectors_status", "connectors", ["status"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), sa.ForeignKey("charging_stations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("connector_id", sa.Integer(), sa.ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("hold_token", sa.String(length=255), nullable=True),
        sa.Column("payment_id", sa.String(length=255), nullable=True),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("vendor_booking_id", sa.String(length=255), nullable=True),
        sa.Column("vendor_sync_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("hold_token", name="uq_bookings_hold_token"),
        sa.CheckConstraint("end_ts > start_ts", name="ck_bookings_valid_time_range"),
        sa.CheckConstraint(f"status IN ({BOOKING_STATUSES})", name="ck_bookings_status"),
        sa.CheckConstraint(f"payment_status IN ({PAYMENT_STATUSES})", name="ck_bookings_payment_status"),
        sa.CheckConstraint(f"vendor_sync_status IN ({VENDOR_SYNC_STATUSES})", name="ck_bookings_vendor_sync_status"),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_vendor_booking_id", "bookings", ["vendor_booking_id"])
    op.create_index("ix_bookings_connector_time", "bookings", ["connector_id", "start_ts", "end_ts"])
    op.create_index("ix_bookings_status_start", "bookings", ["status", "start_ts"])

    # a double-booking végső őre: élő foglalások nem fedhetik egymást connectoronként
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT ex_bookings_no_overlap
        EXCLUDE USING gist (
            connector_id WITH =,
            tstzrange(start_ts, end_ts, '[)') WITH &&
        )
        WHERE (status IN ('CONFIRMED', 'ACTIVE'))
        """
    )

    op.create_table(
        "charging_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("station_id", sa.Integer(), nullable=True),
        sa.Column("connector_id", sa.Integer(), sa.ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_meter_reading", sa.Float(), nullable=True),
        sa.Column("end_meter_reading", sa.Float(), nullable=True),
        sa.Column("energy_kwh", sa.Float(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("cost_amount", sa.Float(), nullable=True),
        sa.Column("cost_currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="STARTING"),
        sa.Column("vendor_session_id", sa.String(length=255), nullable=True),
        sa.Column("meter_data", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(f"status IN ({SESSION_STATUSES})", name="ck_charging_sessions_status"),
    )
    op.create_index("ix_charging_sessions_booking_id", "charging_sessions", ["booking_id"])
    op.create_index("ix_charging_sessions_vendor_session_id", "charging_sessions", ["vendor_session_id"])
    op.create_index("ix_charging_sessions_connector_id", "charging_sessions", ["connector_id"])


def downgrade() -> None:
    op.drop_index("ix_charging_sessions_connector_id", table_name="charging_sessions")
    op.drop_index("ix_charging_sessions_vendor_session_id", table_name="charging_sessions")
    op.drop_index("ix_charging_sessions_booking_id", table_name="charging_sessions")
    op.drop_table("charging_sessions")

    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_no_overlap")
    op.drop_index("ix_bookings_status_start", table_name="bookings")
    op.drop_index("ix_bookings_connector_time", table_name="bookings")
    op.drop_index("ix_bookings_vendor_booking_id", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_connectors_status", table_name="connectors")
    op.drop_index("ix_connectors_vendor_connector_id", table_name="connectors")
    op.drop_index("ix_connectors_station_id", table_name="connectors")
    op.drop_table("connectors")

    op.drop_table("charging_stations")
