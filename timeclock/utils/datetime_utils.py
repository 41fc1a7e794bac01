"""
Timezone-aware datetime helpers.
- Store and compute in UTC in DB.
- Calendar days ("work dates") and shift instants use the organisation's fixed
  UTC offset from settings, never the host's local zone.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from timeclock.core.config import settings

UTC = timezone.utc


def org_timezone(offset_minutes: Optional[int] = None) -> timezone:
    """Fixed-offset tzinfo for the organisation clock."""
    if offset_minutes is None:
        offset_minutes = settings.APP_TIME_ZONE_OFFSET_MINUTES
    return timezone(timedelta(minutes=offset_minutes))


def now_utc() -> datetime:
    """Current time in UTC (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """If dt is naive, treat as UTC and return timezone-aware UTC. If already aware, convert to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    else:
        dt = dt.astimezone(UTC)
    return dt


def to_local(dt: Optional[datetime], offset_minutes: Optional[int] = None) -> Optional[datetime]:
    """Convert to the organisation offset. Naive datetimes are treated as UTC."""
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(org_timezone(offset_minutes))


def iso_local(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in the organisation offset (e.g. +07:00). Used for API responses."""
    if dt is None:
        return None
    return to_local(dt).isoformat()


def get_work_date(instant: datetime, offset_minutes: Optional[int] = None) -> date:
    """Calendar day an instant falls on in the organisation clock."""
    return to_local(instant, offset_minutes).date()


def parse_hhmm(value: str) -> time:
    """
    Parse a planned "HH:MM" time of day.

    Missing or non-numeric parts count as 0, matching how schedules are
    entered upstream ("8" == "08:00").
    """
    parts = (value or "").strip().split(":")
    try:
        hours = int(parts[0]) if parts[0] else 0
    except ValueError:
        hours = 0
    try:
        minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        minutes = 0
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(hour=hours, minute=minutes)


def combine_date_time(day: date, hhmm: str, offset_minutes: Optional[int] = None) -> datetime:
    """Absolute UTC instant of `hhmm` on `day` in the organisation clock."""
    local = datetime.combine(day, parse_hhmm(hhmm), tzinfo=org_timezone(offset_minutes))
    return local.astimezone(UTC)

