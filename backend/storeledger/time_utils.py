from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def local_date(now: Optional[datetime] = None, tz_name: str = "UTC") -> date:
    """Calendar date of `now` in the store's timezone (naive `now` is UTC)."""
    if now is None:
        now = utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


def local_date_bounds(day: date, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """[local midnight of `day`, next local midnight) as UTC-naive bounds."""
    zone = ZoneInfo(tz_name)
    # Day arithmetic on the date, not on the instant, so DST days keep their real length
    next_day = day + timedelta(days=1)
    local_start = datetime(day.year, day.month, day.day, tzinfo=zone)
    local_end = datetime(next_day.year, next_day.month, next_day.day, tzinfo=zone)

    start = local_start.astimezone(timezone.utc).replace(tzinfo=None)
    end = local_end.astimezone(timezone.utc).replace(tzinfo=None)
    return start, end


def local_day_window(now: Optional[datetime] = None, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """
    Calendar day containing `now` in the store's timezone, as UTC-naive bounds.

    - `now` naive is interpreted as UTC; defaults to utcnow()
    - start is local midnight, end is the next local midnight
    - bounds are inclusive-start / exclusive-end
    """
    return local_date_bounds(local_date(now, tz_name), tz_name)
