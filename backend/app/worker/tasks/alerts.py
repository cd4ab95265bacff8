from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from app.db.session import session_scope
from app.notifications.config import load_notification_config
from app.notifications.throttle import AlertThrottle
from app.services.ops_alert_service import OpsAlertService, OpsMetricsSnapshot
from app.worker.celery_app import celery_app

logger = logging.getLogger(__name__)

_ALERT_THROTTLE: AlertThrottle | None = None


def get_alert_throttle() -> AlertThrottle:
    """One throttle per worker process, shared by every alert evaluation.

    Only one process may consume `ALERT_QUEUE`; run that worker with --pool=solo.
    """
    global _ALERT_THROTTLE
    if _ALERT_THROTTLE is None:
        config = load_notification_config()
        _ALERT_THROTTLE = AlertThrottle(
            cooldown=timedelta(seconds=config.alert_cooldown_seconds)
        )
    return _ALERT_THROTTLE


@celery_app.task(name="app.worker.tasks.evaluate_ops_alerts")
def evaluate_ops_alerts(snapshot: dict[str, Any]) -> dict[str, int]:
    config = load_notification_config()
    service = OpsAlertService(throttle=get_alert_throttle(), config=config)

    with session_scope() as session:
        summary = service.evaluate_alerts(
            session, OpsMetricsSnapshot.from_dict(snapshot or {})
        )

    payload = {
        "conditions": summary.conditions,
        "throttled": summary.throttled,
        "dispatched": summary.dispatched,
        "failures": summary.failures,
    }
    logger.info("evaluate_ops_alerts_summary", extra=payload)
    return payload
