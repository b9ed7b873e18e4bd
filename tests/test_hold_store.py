import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.booking.hold_store import HoldStore, parse_hold_key
from app.core.errors import BackendUnavailable, OverlappingHold, SlotAlreadyHeld
from app.core.time_utils import to_epoch


@pytest.fixture
def store(redis):
    return HoldStore(redis, ttl_seconds=600, key_prefix="test:")


async def test_create_and_verify_hold(store, base_time):
    start, end = base_time, base_time + timedelta(hours=1)

    result = await store.create_hold(1, start, end, {"user_id": 42, "station_id": 1, "source": "app"})

    assert result.token.startswith("hold_")
    assert result.expires_in == 600

    hold = await store.verify_hold(result.token)
    assert hold is not None
    assert hold.connector_id == 1
    assert hold.start == start
    assert hold.end == end
    assert hold.user_id == 42
    assert hold.station_id == 1
    assert hold.metadata == {"source": "app"}
    assert 0 < hold.ttl <= 600


async def test_identical_hold_rejected(store, base_time):
    start, end = base_time, base_time + timedelta(hours=1)
    await store.create_hold(1, start, end)

    with pytest.raises(SlotAlreadyHeld):
        await store.create_hold(1, start, end)


async def test_overlapping_hold_rejected(store, base_time):
    await store.create_hold(1, base_time, base_time + timedelta(hours=1))

    with pytest.raises(OverlappingHold) as exc:
        await store.create_hold(1, base_time + timedelta(minutes=30), base_time + timedelta(minutes=90))
    assert exc.value.code == "OVERLAPPING_HOLD"


async def test_adjacent_and_other_connector_holds_allowed(store, base_time):
    await store.create_hold(1, base_time, base_time + timedelta(hours=1))

    # [start, end) -> érintkező ablak nem ütközik
    await store.create_hold(1, base_time + timedelta(hours=1), base_time + timedelta(hours=2))
    await store.create_hold(2, base_time, base_time + timedelta(hours=1))

    assert len(await store.get_connector_holds(1)) == 2
    assert len(await store.get_connector_holds(2)) == 1


async def test_concurrent_overlapping_holds_single_winner(store, base_time):
    windows = [
        (base_time + timedelta(minutes=10 * i), base_time + timedelta(minutes=60 + 10 * i)) for i in range(5)
    ]

    results = await asyncio.gather(
        *(store.create_hold(1, s, e, {"user_id": i}) for i, (s, e) in enumerate(windows)),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(e, (SlotAlreadyHeld, OverlappingHold)) for e in losers)


async def test_release_is_idempotent(store, redis, base_time):
    result = await store.create_hold(1, base_time, base_time + timedelta(hours=1))

    assert await store.release_hold(result.token) is True
    assert await store.release_hold(result.token) is False
    assert await store.release_hold("hold_unknown") is False

    assert await store.verify_hold(result.token) is None
    assert await store.get_connector_holds(1) == []
    assert await redis.zcard(store.connector_index_key(1)) == 0

    # felszabadult a slot
    await store.create_hold(1, base_time, base_time + timedelta(hours=1))


async def test_hold_expires_after_ttl(store, base_time):
    result = await store.create_hold(1, base_time, base_time + timedelta(hours=1), ttl_seconds=1)

    await asyncio.sleep(1.2)

    assert await store.verify_hold(result.token) is None
    assert await store.get_connector_holds(1) == []
    assert await store.release_hold(result.token) is False
    # a lejárt index-bejegyzés nem blokkol
    await store.create_hold(1, base_time + timedelta(minutes=30), base_time + timedelta(minutes=90))


async def test_connector_index_ttl_outlives_hold(store, redis, base_time):
    await store.create_hold(1, base_time, base_time + timedelta(hours=1))

    index_ttl = await redis.ttl(store.connector_index_key(1))
    hold_ttl = await redis.ttl(store.hold_key(1, to_epoch(base_time), to_epoch(base_time + timedelta(hours=1))))
    assert index_ttl > hold_ttl


async def test_hold_windows_parsed_from_index(store, base_time):
    end = base_time + timedelta(hours=1)
    await store.create_hold(7, base_time, end)

    keys = await store.get_connector_holds(7)
    assert parse_hold_key(keys[0]) == ("7", to_epoch(base_time), to_epoch(end))
    assert await store.get_connector_hold_windows(7) == [(to_epoch(base_time), to_epoch(end))]
    assert parse_hold_key("test:something_else") is None


async def test_redis_outage_is_backend_unavailable(store, base_time):
    store._create = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    store._verify = AsyncMock(side_effect=RedisConnectionError("connection refused"))

    with pytest.raises(BackendUnavailable):
        await store.create_hold(1, base_time, base_time + timedelta(hours=1))
    with pytest.raises(BackendUnavailable):
        await store.verify_hold("hold_x")
