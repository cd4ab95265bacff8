from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import CalendarEvent
from app.notifications.time_utils import to_utc
from app.services.errors import NotFoundError

WINDOW_TOLERANCE = timedelta(minutes=10)


class CalendarEventService:
    def find_due_events(
        self,
        session: Session,
        *,
        window_start: datetime,
        window_end: datetime,
        batch_size: int,
    ) -> list[CalendarEvent]:
        # Pad both edges so scan-interval jitter cannot hide events at the boundary.
        lower = to_utc(window_start) - WINDOW_TOLERANCE
        upper = to_utc(window_end) + WINDOW_TOLERANCE
        stmt = (
            select(CalendarEvent)
            .where(CalendarEvent.reminder_minutes.is_not(None))
            .where(CalendarEvent.starts_at >= lower)
            .where(CalendarEvent.starts_at <= upper)
            .order_by(CalendarEvent.starts_at.asc())
            .limit(batch_size)
        )
        return list(session.scalars(stmt).all())

    def update_metadata(
        self,
        session: Session,
        *,
        event_id: UUID,
        metadata: dict[str, Any],
        commit: bool = True,
    ) -> None:
        event = session.get(CalendarEvent, event_id)
        if event is None:
            raise NotFoundError(
                f"Calendar event '{event_id}' not found",
                code="CALENDAR_EVENT_NOT_FOUND",
            )
        event.metadata_json = dict(metadata)
        event.updated_at = datetime.now(UTC)
        session.add(event)
        if commit:
            session.commit()
        else:
            session.flush()
