from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from app.notifications.config import load_notification_config

BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)

# Consume with --concurrency=1 so scans never overlap.
REMINDER_QUEUE = "reminders"
# Consume with --pool=solo: the alert throttle lives in process memory, and every
# prefork child would otherwise hold its own cooldown clock.
ALERT_QUEUE = "alerts"

SCAN_INTERVAL_MINUTES = 5

celery_app = Celery(
    "notification_core_worker",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=[
        "app.worker.tasks.reminders",
        "app.worker.tasks.alerts",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "app.worker.tasks.calendar_reminder_scan": {"queue": REMINDER_QUEUE},
        "app.worker.tasks.evaluate_ops_alerts": {"queue": ALERT_QUEUE},
    },
    beat_schedule={
        "calendar-reminder-scan": {
            "task": "app.worker.tasks.calendar_reminder_scan",
            "schedule": crontab(minute=f"*/{SCAN_INTERVAL_MINUTES}"),
            "kwargs": {
                "lookahead_minutes": load_notification_config().reminder_lookahead_minutes,
            },
            # A scan still queued when the next one fires is redundant.
            "options": {"expires": SCAN_INTERVAL_MINUTES * 60 - 30},
        },
    },
)
