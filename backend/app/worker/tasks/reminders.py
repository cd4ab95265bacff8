from __future__ import annotations

import logging
from typing import Any

from app.db.session import session_scope
from app.notifications.config import load_notification_config
from app.services.reminder_scanner_service import CalendarReminderScanner
from app.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


# Overlapping runs can both see an unsent reminder; see REMINDER_QUEUE.
@celery_app.task(name="app.worker.tasks.calendar_reminder_scan")
def calendar_reminder_scan(
    lookahead_minutes: int | None = None, batch_size: int | None = None
) -> dict[str, Any]:
    config = load_notification_config()

    with session_scope() as session:
        summary = CalendarReminderScanner(config=config).run_reminder_scan(
            session,
            lookahead_minutes=lookahead_minutes,
            batch_size=batch_size,
        )

    payload = summary.as_dict()
    logger.info(
        "calendar_reminder_scan_summary",
        extra={
            "dispatched": summary.dispatched,
            "candidates": summary.candidates,
            "errors": summary.errors,
        },
    )
    return payload
