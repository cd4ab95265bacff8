from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import Notification, NotificationStatus
from app.notifications.cache import NotificationListCache
from app.notifications.config import NotificationConfig
from app.notifications.throttle import AlertThrottle
from app.services.notification_preference_service import NotificationPreferenceService
from app.services.notification_service import NotificationService
from app.services.ops_alert_service import (
    METRICS_STALE,
    QUEUE_BACKLOG,
    WAF_AUTO_BLOCK_ESCALATION,
    OpsAlertService,
    OpsMetricsSnapshot,
    detect_conditions,
)

T0 = datetime(2026, 3, 1, 23, 0, tzinfo=UTC)
CONFIG = NotificationConfig(alert_recipient_ids=(1, 2))


def _service(
    throttle: AlertThrottle | None = None,
    notification_service: NotificationService | None = None,
) -> OpsAlertService:
    return OpsAlertService(
        throttle=throttle or AlertThrottle(),
        config=CONFIG,
        notification_service=notification_service
        or NotificationService(list_cache=NotificationListCache(ttl_seconds=0)),
    )


def _notifications(session: Session) -> list[Notification]:
    return list(session.scalars(select(Notification).order_by(Notification.user_id)).all())


def test_throttle_cooldown() -> None:
    throttle = AlertThrottle()

    assert throttle.should_dispatch("metrics.stale", T0) is True
    assert throttle.should_dispatch("metrics.stale", T0 + timedelta(minutes=4)) is False
    assert throttle.should_dispatch("metrics.stale", T0 + timedelta(minutes=6)) is True


def test_throttle_keys_are_independent() -> None:
    throttle = AlertThrottle()

    assert throttle.should_dispatch("metrics.stale", T0)
    assert throttle.should_dispatch("queue.backlog", T0)
    assert not throttle.should_dispatch("queue.backlog", T0 + timedelta(seconds=1))


def test_suppressed_call_does_not_extend_cooldown() -> None:
    throttle = AlertThrottle(cooldown=timedelta(minutes=5))

    throttle.should_dispatch("waf", T0)
    assert not throttle.should_dispatch("waf", T0 + timedelta(minutes=4))
    assert throttle.should_dispatch("waf", T0 + timedelta(minutes=5))
    assert throttle.last_dispatch("waf") == T0 + timedelta(minutes=5)


def test_throttle_admits_single_caller_under_contention() -> None:
    throttle = AlertThrottle()
    results: list[bool] = []
    results_lock = threading.Lock()
    barrier = threading.Barrier(16)

    def worker() -> None:
        barrier.wait()
        allowed = throttle.should_dispatch("queue.backlog", T0)
        with results_lock:
            results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1


def test_detect_conditions() -> None:
    snapshot = OpsMetricsSnapshot(
        metrics_last_scraped_at=T0 - timedelta(minutes=20),
        rate_limiter_total_requests=1000,
        rate_limiter_blocked_requests=100,
        waf_auto_blocked_count=60,
        queue_pending_jobs=600,
    )

    conditions = {c.key: c for c in detect_conditions(snapshot, now=T0, config=CONFIG)}

    assert conditions[METRICS_STALE].severity == "critical"
    assert conditions[WAF_AUTO_BLOCK_ESCALATION].severity == "critical"
    assert conditions[QUEUE_BACKLOG].severity == "warning"
    assert "rate_limiter.blocking_surge" not in conditions


def test_snapshot_from_dict_tolerates_bad_values() -> None:
    snapshot = OpsMetricsSnapshot.from_dict(
        {
            "metrics_last_scraped_at": "2026-03-01T22:58:00Z",
            "queue_pending_jobs": "oops",
            "waf_auto_blocked_count": -4,
        }
    )

    assert snapshot.metrics_last_scraped_at == datetime(2026, 3, 1, 22, 58, tzinfo=UTC)
    assert snapshot.queue_pending_jobs == 0
    assert snapshot.waf_auto_blocked_count == 0


def test_evaluate_alerts_throttles_repeats(session: Session) -> None:
    service = _service()

    def run(now: datetime):
        # Freshly scraped each time, so only the backlog condition fires.
        snapshot = OpsMetricsSnapshot(metrics_last_scraped_at=now, queue_pending_jobs=600)
        return service.evaluate_alerts(session, snapshot, now=now)

    first = run(T0)
    assert first.conditions == 1
    assert first.dispatched == 2

    second = run(T0 + timedelta(minutes=4))
    assert second.conditions == 1
    assert second.throttled == 1
    assert second.dispatched == 0

    third = run(T0 + timedelta(minutes=6))
    assert third.conditions == 1
    assert third.dispatched == 2

    notifications = _notifications(session)
    assert len(notifications) == 4
    assert {n.type for n in notifications} == {"ops.alert.queue.backlog"}
    assert {n.priority for n in notifications} == {"high"}


def test_critical_alerts_bypass_quiet_hours(session: Session) -> None:
    NotificationPreferenceService().upsert_preference(
        session,
        user_id=1,
        patch={"quiet_hours_start": "22:00", "quiet_hours_end": "06:00"},
    )
    service = OpsAlertService(
        throttle=AlertThrottle(),
        config=NotificationConfig(alert_recipient_ids=(1,)),
        notification_service=NotificationService(list_cache=NotificationListCache(ttl_seconds=0)),
    )

    service.evaluate_alerts(
        session,
        OpsMetricsSnapshot(
            metrics_last_scraped_at=T0,
            waf_auto_blocked_count=60,
            queue_pending_jobs=600,
        ),
        now=T0,
    )

    by_type = {n.type: n for n in _notifications(session)}
    waf = by_type["ops.alert.waf.auto_block_escalation"]
    backlog = by_type["ops.alert.queue.backlog"]

    assert waf.priority == "critical"
    assert waf.status == NotificationStatus.delivered.value
    assert waf.payload["bypassQuietHours"] is True
    assert backlog.status == NotificationStatus.pending.value
    assert backlog.payload["bypassQuietHours"] is False


class _BrokenNotificationService(NotificationService):
    def dispatch(self, *args, **kwargs):
        raise RuntimeError("database is gone")


def test_dispatch_failures_are_swallowed(session: Session) -> None:
    service = _service(
        notification_service=_BrokenNotificationService(
            list_cache=NotificationListCache(ttl_seconds=0)
        )
    )

    summary = service.evaluate_alerts(
        session,
        OpsMetricsSnapshot(metrics_last_scraped_at=None, queue_pending_jobs=600),
        now=T0,
    )

    assert summary.conditions == 2
    assert summary.dispatched == 0
    assert summary.failures == 4
    assert _notifications(session) == []


def test_missing_recipients_are_reported_without_spending_cooldown(
    session: Session, caplog: pytest.LogCaptureFixture
) -> None:
    throttle = AlertThrottle()
    service = OpsAlertService(
        throttle=throttle,
        config=NotificationConfig(alert_recipient_ids=()),
        notification_service=NotificationService(list_cache=NotificationListCache(ttl_seconds=0)),
    )
    snapshot = OpsMetricsSnapshot(metrics_last_scraped_at=T0, queue_pending_jobs=600)

    with caplog.at_level(logging.WARNING):
        summary = service.evaluate_alerts(session, snapshot, now=T0)

    assert summary.conditions == 1
    assert summary.dispatched == 0
    assert any(record.getMessage() == "ops_alert_no_recipients" for record in caplog.records)
    assert throttle.last_dispatch(QUEUE_BACKLOG) is None

    service.config = CONFIG
    assert service.evaluate_alerts(session, snapshot, now=T0).dispatched == 2
