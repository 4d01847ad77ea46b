"""Time helpers: UTC normalisation and the attendance calendar day."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from attendance_portal.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite and some clients drop tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def attendance_tz() -> ZoneInfo:
    return ZoneInfo(settings.ATTENDANCE_TIMEZONE)


def attendance_day(moment: datetime) -> date:
    """Calendar day of *moment* in the portal's timezone."""
    return as_utc(moment).astimezone(attendance_tz()).date()


def end_of_day(day: date) -> datetime:
    """23:59:59 local on *day*, as an aware UTC datetime."""
    local = datetime.combine(day, time(23, 59, 59), tzinfo=attendance_tz())
    return local.astimezone(timezone.utc)


def late_cutoff() -> time:
    hours, minutes = settings.LATE_CHECKIN_CUTOFF.split(":")
    return time(int(hours), int(minutes))


def is_late(moment: datetime) -> bool:
    local = as_utc(moment).astimezone(attendance_tz())
    return local.time() > late_cutoff()
