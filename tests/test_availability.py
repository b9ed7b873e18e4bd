from datetime import timedelta

import pytest

from app.core.errors import StationNotFound, ValidationFailed
from app.db.models import BookingStatus

STATION_ID = 1


def _free(slots, connector_id):
    return [s.start for s in slots if s.connector_id == connector_id]


async def test_empty_station_grid_skips_out_of_service(services, base_time):
    slots = await services.availability.compute_available_slots(
        STATION_ID, base_time, base_time + timedelta(hours=4), 60, now=base_time - timedelta(days=1)
    )

    # connector 3 MAINTENANCE
    assert {s.connector_id for s in slots} == {1, 2}
    assert len(slots) == 8
    first = slots[0]
    assert first.connector_number == 1
    assert first.connector_type == "CCS2"
    assert first.power_kw == 50.0
    assert first.duration_minutes == 60
    assert first.end - first.start == timedelta(minutes=60)


async def test_durable_bookings_block_overlapping_slots(services, make_booking, base_time):
    await make_booking(1, base_time + timedelta(minutes=30), base_time + timedelta(minutes=90))
    await make_booking(2, base_time, base_time + timedelta(hours=1), status=BookingStatus.CANCELLED.value)

    slots = await services.availability.compute_available_slots(
        STATION_ID, base_time, base_time + timedelta(hours=3), 60, now=base_time - timedelta(days=1)
    )

    # részleges átfedés is foglalt
    assert _free(slots, 1) == [base_time + timedelta(hours=2)]
    assert len(_free(slots, 2)) == 3


async def test_holds_block_slots(services, base_time):
    await services.holds.create_hold(2, base_time + timedelta(hours=1), base_time + timedelta(hours=2))

    slots = await services.availability.compute_available_slots(
        STATION_ID, base_time, base_time + timedelta(hours=3), 60, now=base_time - timedelta(days=1)
    )

    assert _free(slots, 2) == [base_time, base_time + timedelta(hours=2)]
    assert len(_free(slots, 1)) == 3


async def test_live_occupied_blocks_lookahead_window(services, base_time):
    await services.projection.update_connector_status(STATION_ID, 1, "OCCUPIED")
    now = base_time - timedelta(minutes=10)

    slots = await services.availability.compute_available_slots(
        STATION_ID, base_time, base_time + timedelta(hours=2), 15, now=now
    )

    # 30 perces look-ahead: 10:00 és 10:15 kiesik (now=09:50)
    free_1 = _free(slots, 1)
    assert base_time not in free_1
    assert base_time + timedelta(minutes=15) not in free_1
    assert base_time + timedelta(minutes=30) in free_1
    assert len(_free(slots, 2)) == 8


async def test_result_cached_until_invalidated(services, make_booking, base_time):
    window = (base_time, base_time + timedelta(hours=2))
    now = base_time - timedelta(days=1)

    first = await services.availability.compute_available_slots(STATION_ID, *window, 60, now=now)
    await make_booking(1, base_time, base_time + timedelta(hours=1))

    cached = await services.availability.compute_available_slots(STATION_ID, *window, 60, now=now)
    assert cached == first

    assert await services.availability.invalidate(STATION_ID) >= 1
    fresh = await services.availability.compute_available_slots(STATION_ID, *window, 60, now=now)
    assert len(fresh) == len(first) - 1


async def test_default_window_is_next_24_hours(services, base_time):
    slots = await services.availability.compute_available_slots(STATION_ID, now=base_time)

    assert len(_free(slots, 1)) == 24
    assert slots[0].start == base_time


async def test_validation(services, base_time):
    with pytest.raises(ValidationFailed):
        await services.availability.compute_available_slots(STATION_ID, base_time, base_time)
    with pytest.raises(ValidationFailed):
        await services.availability.compute_available_slots(
            STATION_ID, base_time, base_time + timedelta(hours=1), slot_duration_minutes=10
        )
    with pytest.raises(ValidationFailed):
        await services.availability.compute_available_slots(
            STATION_ID, base_time, base_time + timedelta(days=1), slot_duration_minutes=481
        )


async def test_unknown_station(services, base_time):
    with pytest.raises(StationNotFound):
        await services.availability.compute_available_slots(999, base_time, base_time + timedelta(hours=1))
