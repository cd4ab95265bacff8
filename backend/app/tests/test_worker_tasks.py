from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Notification
from app.worker import celery_app as celery_module
from app.worker.tasks import alerts


@pytest.fixture()
def fresh_throttle(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(alerts, "_ALERT_THROTTLE", None)
    monkeypatch.setenv("OPS_ALERT_RECIPIENT_IDS", "5")
    monkeypatch.setenv("ALERT_COOLDOWN_SECONDS", "300")


def _snapshot() -> dict:
    return {
        "metrics_last_scraped_at": datetime.now(UTC).isoformat(),
        "queue_pending_jobs": 600,
    }


def test_alert_and_reminder_tasks_are_routed_to_dedicated_queues() -> None:
    routes = celery_module.celery_app.conf.task_routes

    assert routes["app.worker.tasks.evaluate_ops_alerts"] == {
        "queue": celery_module.ALERT_QUEUE
    }
    assert routes["app.worker.tasks.calendar_reminder_scan"] == {
        "queue": celery_module.REMINDER_QUEUE
    }


def test_alert_throttle_is_shared_across_task_runs(
    fresh_throttle: None, session_factory: sessionmaker[Session]
) -> None:
    assert alerts.get_alert_throttle() is alerts.get_alert_throttle()

    first = alerts.evaluate_ops_alerts(_snapshot())
    second = alerts.evaluate_ops_alerts(_snapshot())

    assert first["dispatched"] == 1
    assert second["throttled"] == 1
    assert second["dispatched"] == 0

    with session_factory() as session:
        assert session.scalar(select(func.count(Notification.id))) == 1
