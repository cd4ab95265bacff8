from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.notifications.time_utils import to_utc


@dataclass(frozen=True)
class RenderedNotification:
    title: str
    body: str | None


def _format_start_utc(value: datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%d %H:%M UTC")


def render_calendar_reminder(
    *,
    title: str | None,
    starts_at: datetime,
    location: str | None = None,
    video_conference_link: str | None = None,
) -> RenderedNotification:
    event_title = title.strip() if isinstance(title, str) and title.strip() else "Upcoming event"

    parts: list[str] = []
    if isinstance(location, str) and location.strip():
        parts.append(f"Location: {location.strip()}")
    if isinstance(video_conference_link, str) and video_conference_link.strip():
        parts.append(f"Join: {video_conference_link.strip()}")

    body = " • ".join(parts) if parts else f"Starts at {_format_start_utc(starts_at)}"
    return RenderedNotification(title=f"Reminder: {event_title}", body=body)


def render_ops_alert(*, summary: str, details: dict[str, object]) -> RenderedNotification:
    fragments = [
        f"{key}={value}" for key, value in sorted(details.items()) if value is not None
    ]
    body = ", ".join(fragments) if fragments else None
    return RenderedNotification(title=f"Ops alert: {summary}", body=body)
