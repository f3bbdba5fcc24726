# Overview: UTC clock helpers for token, session and idempotency expiry and for order scheduling.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC; every stored timestamp uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_in(ttl: timedelta, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + ttl


def window_start(window: timedelta, now: Optional[datetime] = None) -> datetime:
    """Oldest instant still inside a sliding window ending now."""
    return (now or utcnow()) - window


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    # A record without an expiry never lapses
    if expires_at is None:
        return False
    return expires_at <= (now or utcnow())


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse scheduledAt-style input into naive UTC.

    Blank input gives None. Offsets (including a trailing Z) are converted
    to UTC; a value without an offset is taken to be UTC already.
    Malformed input raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 at second precision with a Z suffix; naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
