from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.db.models import CalendarEvent, NotificationCategory, NotificationPriority
from app.notifications.config import NotificationConfig, load_notification_config
from app.notifications.dedupe import (
    append_reminder_key,
    build_reminder_key,
    format_instant,
    read_reminders_sent,
)
from app.notifications.templates import render_calendar_reminder
from app.notifications.time_utils import minutes_before, now_utc, to_utc
from app.services.calendar_event_service import CalendarEventService
from app.services.notification_service import NotificationEvent, NotificationService

logger = logging.getLogger(__name__)

MIN_LOOKAHEAD_MINUTES = 5
CALENDAR_REMINDER_TYPE = "calendar.reminder"


@dataclass(frozen=True)
class ReminderDescriptor:
    event_id: str
    user_id: int | None
    reminder_key: str
    reminder_time: datetime
    starts_at: datetime


@dataclass(frozen=True)
class ReminderScanSummary:
    dispatched: int
    window_start: datetime
    window_end: datetime
    events: list[ReminderDescriptor] = field(default_factory=list)
    candidates: int = 0
    skipped_started: int = 0
    skipped_not_due: int = 0
    skipped_already_sent: int = 0
    skipped_missing_user: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "dispatched": self.dispatched,
            "window": {
                "start": format_instant(self.window_start),
                "end": format_instant(self.window_end),
            },
            "events": [
                {
                    "event_id": item.event_id,
                    "user_id": item.user_id,
                    "reminder_key": item.reminder_key,
                    "reminder_time": format_instant(item.reminder_time),
                }
                for item in self.events
            ],
            "candidates": self.candidates,
            "skipped_started": self.skipped_started,
            "skipped_not_due": self.skipped_not_due,
            "skipped_already_sent": self.skipped_already_sent,
            "skipped_missing_user": self.skipped_missing_user,
            "errors": self.errors,
        }


def build_reminder_descriptor(event: CalendarEvent) -> ReminderDescriptor:
    starts_at = to_utc(event.starts_at)
    minutes = int(event.reminder_minutes or 0)
    return ReminderDescriptor(
        event_id=str(event.id),
        user_id=event.user_id,
        reminder_key=build_reminder_key(starts_at=starts_at, reminder_minutes=minutes),
        reminder_time=minutes_before(starts_at, minutes),
        starts_at=starts_at,
    )


class CalendarReminderScanner:
    def __init__(
        self,
        *,
        config: NotificationConfig | None = None,
        event_service: CalendarEventService | None = None,
        notification_service: NotificationService | None = None,
    ) -> None:
        self.config = config or load_notification_config()
        self.event_service = event_service or CalendarEventService()
        self.notification_service = notification_service or NotificationService()

    def run_reminder_scan(
        self,
        session: Session,
        *,
        now: datetime | None = None,
        lookahead_minutes: int | None = None,
        batch_size: int | None = None,
    ) -> ReminderScanSummary:
        now = to_utc(now) if now is not None else now_utc()
        lookahead = max(
            MIN_LOOKAHEAD_MINUTES,
            lookahead_minutes
            if lookahead_minutes is not None
            else self.config.reminder_lookahead_minutes,
        )
        limit = max(1, batch_size if batch_size is not None else self.config.reminder_batch_size)
        window_end = now + timedelta(minutes=lookahead)

        candidates = self.event_service.find_due_events(
            session,
            window_start=now,
            window_end=window_end,
            batch_size=limit,
        )

        dispatched: list[ReminderDescriptor] = []
        skipped_started = 0
        skipped_not_due = 0
        skipped_already_sent = 0
        skipped_missing_user = 0
        errors = 0
        in_window = 0

        for event in candidates:
            descriptor = build_reminder_descriptor(event)
            if descriptor.starts_at > window_end:
                continue
            in_window += 1

            if descriptor.starts_at <= now:
                skipped_started += 1
                continue
            if descriptor.reminder_time > now:
                skipped_not_due += 1
                continue
            sent = read_reminders_sent(event.metadata_json)
            if descriptor.reminder_key in sent:
                skipped_already_sent += 1
                continue
            if event.user_id is None:
                skipped_missing_user += 1
                logger.warning(
                    "calendar_reminder_missing_user",
                    extra={"event_id": descriptor.event_id},
                )
                continue

            try:
                self._dispatch_reminder(session, event, descriptor, sent=sent, now=now)
                dispatched.append(descriptor)
            except Exception:
                session.rollback()
                errors += 1
                logger.exception(
                    "calendar_reminder_dispatch_failed",
                    extra={
                        "event_id": descriptor.event_id,
                        "reminder_key": descriptor.reminder_key,
                    },
                )

        summary = ReminderScanSummary(
            dispatched=len(dispatched),
            window_start=now,
            window_end=window_end,
            events=dispatched,
            candidates=in_window,
            skipped_started=skipped_started,
            skipped_not_due=skipped_not_due,
            skipped_already_sent=skipped_already_sent,
            skipped_missing_user=skipped_missing_user,
            errors=errors,
        )
        logger.info(
            "calendar_reminder_scan_completed",
            extra={
                "dispatched": summary.dispatched,
                "candidates": summary.candidates,
                "errors": summary.errors,
            },
        )
        return summary

    def _dispatch_reminder(
        self,
        session: Session,
        event: CalendarEvent,
        descriptor: ReminderDescriptor,
        *,
        sent: list[str],
        now: datetime,
    ) -> None:
        rendered = render_calendar_reminder(
            title=event.title,
            starts_at=descriptor.starts_at,
            location=event.location,
            video_conference_link=event.video_conference_link,
        )
        expires_at = to_utc(event.ends_at) if event.ends_at else descriptor.starts_at

        self.notification_service.dispatch(
            session,
            NotificationEvent(
                user_id=event.user_id,
                category=NotificationCategory.system.value,
                priority=NotificationPriority.normal.value,
                type=CALENDAR_REMINDER_TYPE,
                title=rendered.title,
                body=rendered.body,
                payload={
                    "eventId": descriptor.event_id,
                    "reminderKey": descriptor.reminder_key,
                    "startsAt": format_instant(descriptor.starts_at),
                    "reminderMinutes": event.reminder_minutes,
                },
                expires_at=expires_at,
            ),
            now=now,
            commit=False,
        )

        metadata = dict(event.metadata_json) if isinstance(event.metadata_json, dict) else {}
        metadata["remindersSent"] = append_reminder_key(sent, descriptor.reminder_key)
        metadata["lastReminderAt"] = format_instant(now)
        self.event_service.update_metadata(
            session, event_id=event.id, metadata=metadata, commit=False
        )
        # Notification and dedupe marker land together or not at all.
        session.commit()
        self.notification_service.invalidate_listing(event.user_id)
