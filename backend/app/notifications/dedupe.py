from __future__ import annotations

from datetime import datetime

from app.notifications.time_utils import to_utc

REMINDERS_SENT_CAP = 10


def format_instant(dt: datetime) -> str:
    # Millisecond precision with a Z suffix, e.g. 2026-03-01T09:00:00.000Z
    return to_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_reminder_key(*, starts_at: datetime, reminder_minutes: int) -> str:
    return f"{format_instant(starts_at)}:{reminder_minutes}"


def read_reminders_sent(metadata: dict | None) -> list[str]:
    if not isinstance(metadata, dict):
        return []
    sent = metadata.get("remindersSent")
    if not isinstance(sent, list):
        return []
    return [entry for entry in sent if isinstance(entry, str)]


def append_reminder_key(
    sent: list[str], reminder_key: str, *, cap: int = REMINDERS_SENT_CAP
) -> list[str]:
    updated = [entry for entry in sent if entry != reminder_key]
    updated.append(reminder_key)
    return updated[-cap:]
