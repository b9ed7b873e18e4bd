# app/booking/hold_store.py
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from redis.exceptions import RedisError

from app.core.config import settings
from app.core.errors import BackendUnavailable, OverlappingHold, SlotAlreadyHeld
from app.core.time_utils import from_epoch, to_epoch, utcnow

logger = logging.getLogger("booking.holds")

# KEYS: hold_key, token_key, connector_index_key
# ARGV: payload, ttl, start, end, index_grace
#
# Az index lejárt tagjait (hold kulcs már nincs) útközben kidobjuk,
# így egy halott index-bejegyzés nem ad hamis OVERLAPPING_HOLD-ot.
CREATE_HOLD_LUA = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return {0, 'SLOT_ALREADY_HELD'}
end

local ttl = tonumber(ARGV[2])
local new_start = tonumber(ARGV[3])
local new_end = tonumber(ARGV[4])

local members = redis.call('ZRANGE', KEYS[3], 0, -1)
for _, member in ipairs(members) do
  if redis.call('EXISTS', member) == 0 then
    redis.call('ZREM', KEYS[3], member)
  else
    local hold_start, hold_end = string.match(member, ':(%d+):(%d+)$')
    hold_start = tonumber(hold_start)
    hold_end = tonumber(hold_end)
    if hold_start and hold_end and new_start < hold_end and new_end > hold_start then
      return {0, 'OVERLAPPING_HOLD'}
    end
  end
end

redis.call('SET', KEYS[1], ARGV[1], 'EX', ttl)
redis.call('SET', KEYS[2], KEYS[1], 'EX', ttl)
redis.call('ZADD', KEYS[3], new_start, KEYS[1])

local index_ttl = ttl + tonumber(ARGV[5])
if redis.call('TTL', KEYS[3]) < index_ttl then
  redis.call('EXPIRE', KEYS[3], index_ttl)
end

return {1, 'OK'}
"""

# KEYS: token_key
# ARGV: connector_index_key prefix
RELEASE_HOLD_LUA = """
local hold_key = redis.call('GET', KEYS[1])
if not hold_key then
  return 0
end

redis.call('DEL', hold_key)
redis.call('DEL', KEYS[1])

local connector_id = string.match(hold_key, 'slot_hold:(.+):%d+:%d+$')
if connector_id then
  redis.call('ZREM', ARGV[1] .. connector_id, hold_key)
end

return 1
"""

# KEYS: token_key
VERIFY_HOLD_LUA = """
local hold_key = redis.call('GET', KEYS[1])
if not hold_key then
  return false
end

local payload = redis.call('GET', hold_key)
if not payload then
  return false
end

return {payload, redis.call('TTL', hold_key)}
"""

# KEYS: connector_index_key
LIST_HOLDS_LUA = """
local live = {}
local members = redis.call('ZRANGE', KEYS[1], 0, -1)
for _, member in ipairs(members) do
  if redis.call('EXISTS', member) == 1 then
    table.insert(live, member)
  end
end
return live
"""

_HOLD_KEY_RE = re.compile(r"slot_hold:(?P<connector>.+):(?P<start>\d+):(?P<end>\d+)$")


def parse_hold_key(hold_key: str) -> Optional[Tuple[str, int, int]]:
    m = _HOLD_KEY_RE.search(hold_key)
    if not m:
        return None
    return m.group("connector"), int(m.group("start")), int(m.group("end"))


def new_hold_token() -> str:
    return f"hold_{uuid.uuid4().hex}"


@dataclass
class HoldResult:
    token: str
    expires_in: int


@dataclass
class Hold:
    token: str
    connector_id: int
    start_ts: int
    end_ts: int
    created_at: int
    user_id: Optional[int] = None
    station_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # hátralévő TTL másodpercben (verify tölti ki)
    ttl: Optional[int] = None

    @property
    def start(self) -> datetime:
        return from_epoch(self.start_ts)

    @property
    def end(self) -> datetime:
        return from_epoch(self.end_ts)

    def to_json(self) -> str:
        data = asdict(self)
        data.pop("ttl", None)
        return json.dumps(data, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str, ttl: Optional[int] = None) -> "Hold":
        data = json.loads(raw)
        return cls(
            token=data["token"],
            connector_id=int(data["connector_id"]),
            start_ts=int(data["start_ts"]),
            end_ts=int(data["end_ts"]),
            created_at=int(data.get("created_at") or 0),
            user_id=data.get("user_id"),
            station_id=data.get("station_id"),
            metadata=data.get("metadata") or {},
            ttl=ttl,
        )


class HoldStore:
    """
    TTL-es slot lock a Redisben. Minden check-and-set egy Lua scriptben fut,
    a lejárat maga a takarítás (nincs külön sweep).
    """

    def __init__(
        self,
        redis,
        ttl_seconds: Optional[int] = None,
        key_prefix: Optional[str] = None,
        index_grace_seconds: int = 60,
    ) -> None:
        self.redis = redis
        self.ttl_seconds = int(ttl_seconds or settings.booking_hold_ttl_seconds)
        self.key_prefix = settings.redis_key_prefix if key_prefix is None else key_prefix
        self.index_grace_seconds = index_grace_seconds

        self._create = redis.register_script(CREATE_HOLD_LUA)
        self._release = redis.register_script(RELEASE_HOLD_LUA)
        self._verify = redis.register_script(VERIFY_HOLD_LUA)
        self._list = redis.register_script(LIST_HOLDS_LUA)

    # --- kulcsok ---

    def hold_key(self, connector_id: int, start_ts: int, end_ts: int) -> str:
        return f"{self.key_prefix}slot_hold:{connector_id}:{start_ts}:{end_ts}"

    def token_key(self, token: str) -> str:
        return f"{self.key_prefix}hold_token:{token}"

    def connector_index_key(self, connector_id: int) -> str:
        return f"{self.key_prefix}connector_holds:{connector_id}"

    # --- műveletek ---

    async def create_hold(
        self,
        connector_id: int,
        start: datetime,
        end: datetime,
        metadata: Optional[Dict[str, Any]] = None,
        ttl_seconds: Optional[int] = None,
    ) -> HoldResult:
        meta = dict(metadata or {})
        ttl = int(ttl_seconds or self.ttl_seconds)
        start_ts = to_epoch(start)
        end_ts = to_epoch(end)

        hold = Hold(
            token=new_hold_token(),
            connector_id=int(connector_id),
            start_ts=start_ts,
            end_ts=end_ts,
            created_at=to_epoch(utcnow()),
            user_id=meta.pop("user_id", None),
            station_id=meta.pop("station_id", None),
            metadata=meta,
        )
        hold_key = self.hold_key(connector_id, start_ts, end_ts)

        try:
            ok, reason = await self._create(
                keys=[hold_key, self.token_key(hold.token), self.connector_index_key(connector_id)],
                args=[hold.to_json(), ttl, start_ts, end_ts, self.index_grace_seconds],
            )
        except RedisError as e:
            logger.error("hold_create_failed connector_id=%s err=%s", connector_id, e)
            raise BackendUnavailable("Hold store unavailable") from e

        if int(ok) != 1:
            if reason == "SLOT_ALREADY_HELD":
                raise SlotAlreadyHeld("Slot is already held", connector_id=connector_id)
            raise OverlappingHold("Slot overlaps an existing hold", connector_id=connector_id)

        logger.info(
            "hold_created connector_id=%s start=%s end=%s token=%s", connector_id, start_ts, end_ts, hold.token
        )
        return HoldResult(token=hold.token, expires_in=ttl)

    async def release_hold(self, token: str) -> bool:
        """
        Idempotens: False ha már nem volt meg (lejárt vagy korábban elengedtük).
        """
        try:
            removed = await self._release(
                keys=[self.token_key(token)],
                args=[f"{self.key_prefix}connector_holds:"],
            )
        except RedisError as e:
            logger.error("hold_release_failed token=%s err=%s", token, e)
            raise BackendUnavailable("Hold store unavailable") from e

        if int(removed or 0) == 0:
            logger.info("hold_release_noop token=%s reason=HOLD_NOT_FOUND", token)
            return False
        return True

    async def verify_hold(self, token: str) -> Optional[Hold]:
        try:
            res = await self._verify(keys=[self.token_key(token)])
        except RedisError as e:
            logger.error("hold_verify_failed token=%s err=%s", token, e)
            raise BackendUnavailable("Hold store unavailable") from e

        if not res:
            return None
        payload, ttl = res[0], res[1]
        return Hold.from_json(payload, ttl=int(ttl))

    async def get_connector_holds(self, connector_id: int) -> List[str]:
        try:
            members = await self._list(keys=[self.connector_index_key(connector_id)])
        except RedisError as e:
            logger.error("hold_list_failed connector_id=%s err=%s", connector_id, e)
            raise BackendUnavailable("Hold store unavailable") from e
        return list(members or [])

    async def get_connector_hold_windows(self, connector_id: int) -> List[Tuple[int, int]]:
        windows: List[Tuple[int, int]] = []
        for key in await self.get_connector_holds(connector_id):
            parsed = parse_hold_key(key)
            if parsed:
                windows.append((parsed[1], parsed[2]))
        return windows
