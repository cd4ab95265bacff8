from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.db.models import NotificationPreference
from app.notifications.preferences import (
    DEFAULT_TIMEZONE,
    ResolvedPreference,
    resolve_preference,
)

_TIME_OF_DAY_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def now_utc() -> datetime:
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def resolve_timezone(name: str | None) -> ZoneInfo:
    if not name:
        return ZoneInfo(DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_time_of_day_minutes(value: str | None) -> int | None:
    """Parse ``HH:MM`` (optionally ``HH:MM:SS``) into minutes since midnight."""
    if not isinstance(value, str):
        return None
    match = _TIME_OF_DAY_RE.match(value.strip())
    if match is None:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def local_minutes_since_midnight(now: datetime, timezone: str | None) -> int:
    local = to_utc(now).astimezone(resolve_timezone(timezone))
    return local.hour * 60 + local.minute


def is_quiet_hours(
    preference: ResolvedPreference | NotificationPreference | None,
    now: datetime,
) -> bool:
    if not isinstance(preference, ResolvedPreference):
        preference = resolve_preference(preference)

    if not preference.quiet_hours_start or not preference.quiet_hours_end:
        return False

    start = parse_time_of_day_minutes(preference.quiet_hours_start)
    end = parse_time_of_day_minutes(preference.quiet_hours_end)
    if start is None or end is None:
        return False

    current = local_minutes_since_midnight(now, preference.timezone)
    if start < end:
        return start <= current < end
    return current >= start or current < end


def minutes_before(dt: datetime, minutes: int) -> datetime:
    return to_utc(dt) - timedelta(minutes=minutes)
