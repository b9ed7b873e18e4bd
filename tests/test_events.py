import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from app.booking.events import EventPublisher, EventType
from app.core.time_utils import parse_timestamp


def _publisher(redis_mock, timeout=0.5):
    return EventPublisher(redis_mock, timeout_seconds=timeout, key_prefix="test:")


async def test_event_shape_and_channel():
    redis_mock = AsyncMock()
    redis_mock.publish.return_value = 3
    pub = _publisher(redis_mock)
    start = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
    end = datetime(2030, 1, 1, 11, 0, tzinfo=timezone.utc)

    receivers = await pub.booking_confirmed(1, 2, 99, start, end)

    assert receivers == 3
    channel, raw = redis_mock.publish.await_args.args
    assert channel == "test:station_updates:1"
    event = json.loads(raw)
    assert set(event) == {"type", "timestamp", "data"}
    assert event["type"] == EventType.BOOKING_CONFIRMED
    assert event["timestamp"].endswith("Z")
    assert parse_timestamp(event["timestamp"]) is not None
    assert event["data"] == {
        "station_id": 1,
        "connector_id": 2,
        "booking_id": 99,
        "status": "RESERVED",
        "start": "2030-01-01T10:00:00Z",
        "end": "2030-01-01T11:00:00Z",
    }


async def test_connector_status_goes_to_connector_channel():
    redis_mock = AsyncMock()
    pub = _publisher(redis_mock)

    await pub.connector_status_changed(5, 7, "OCCUPIED")

    channel, raw = redis_mock.publish.await_args.args
    assert channel == "test:connector_status_update:5"
    assert json.loads(raw)["data"]["status"] == "OCCUPIED"


async def test_publish_failure_is_swallowed():
    redis_mock = AsyncMock()
    redis_mock.publish.side_effect = RedisConnectionError("down")
    pub = _publisher(redis_mock)

    assert await pub.station_update(1, EventType.CONNECTOR_FREED, {"reason": "NO_SHOW"}) == 0


async def test_publish_timeout_is_swallowed():
    async def slow_publish(channel, message):
        await asyncio.sleep(1)
        return 1

    redis_mock = AsyncMock()
    redis_mock.publish.side_effect = slow_publish
    pub = _publisher(redis_mock, timeout=0.05)

    assert await pub.session_started(1, 2, 3) == 0


async def test_booking_survives_event_outage(services, base_time):
    failing = AsyncMock()
    failing.publish.side_effect = RedisConnectionError("down")
    services.events.redis = failing

    hold = await services.orchestrator.create_hold(1, 1, base_time, base_time + timedelta(hours=1), 42)
    booking = await services.orchestrator.confirm_booking(hold.token, 42)

    assert booking.status == "CONFIRMED"
    assert failing.publish.await_count >= 2
