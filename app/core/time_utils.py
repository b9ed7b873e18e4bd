# app/core/time_utils.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc_z(dt: datetime) -> str:
    return as_utc(dt).isoformat().replace("+00:00", "Z")


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    SQLite naiv datetime-ot ad vissza, Postgres tz-awaret; mindent UTC-re hozunk.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch(dt: datetime) -> int:
    return int(as_utc(dt).timestamp())


def from_epoch(ts: Any) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def parse_timestamp(ts: Any) -> Optional[datetime]:
    """
    Vendor timestamp lehet "Z", +00:00 vagy epoch szám; hibás értékre None.
    """
    if isinstance(ts, datetime):
        return as_utc(ts)
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return from_epoch(ts)
    if not isinstance(ts, str) or not ts.strip():
        return None

    s = ts.strip()
    try:
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(s))
    except ValueError:
        return None
