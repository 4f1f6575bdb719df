from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.settings import get_settings

DEFAULT_TIMEZONE = "Asia/Jakarta"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except ZoneInfoNotFoundError:
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_now() -> datetime:
    return datetime.now(timezone.utc).astimezone(attendance_timezone())


def to_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=attendance_timezone())
    return value.astimezone(attendance_timezone())


def local_today() -> date:
    return local_now().date()


def time_of_day(value: datetime) -> time:
    """Wall-clock time truncated to whole seconds, as attendance rows store it."""
    return to_local(value).time().replace(microsecond=0, tzinfo=None)


def day_of_week(value: date) -> int:
    # 0 = Sunday ... 6 = Saturday, the convention attendance_schedules uses.
    return (value.weekday() + 1) % 7


def parse_clock(value: str | time) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(value.strip())
