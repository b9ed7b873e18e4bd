# app/core/redis.py
from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from app.core.config import settings


def create_redis(url: Optional[str] = None) -> aioredis.Redis:
    # decode_responses: a Lua scriptek és hash-ek str-t adnak vissza
    return aioredis.from_url(url or settings.redis_url, decode_responses=True)
