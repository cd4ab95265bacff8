from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.db.models import NotificationCategory, NotificationPriority
from app.notifications.config import NotificationConfig, load_notification_config
from app.notifications.templates import render_ops_alert
from app.notifications.throttle import AlertThrottle
from app.notifications.time_utils import now_utc, to_utc
from app.services.notification_service import NotificationEvent, NotificationService

logger = logging.getLogger(__name__)

SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"

METRICS_STALE = "metrics.stale"
RATE_LIMITER_BLOCKING_SURGE = "rate_limiter.blocking_surge"
WAF_AUTO_BLOCK_ESCALATION = "waf.auto_block_escalation"
QUEUE_BACKLOG = "queue.backlog"


@dataclass(frozen=True)
class OpsMetricsSnapshot:
    metrics_last_scraped_at: datetime | None = None
    rate_limiter_total_requests: int = 0
    rate_limiter_blocked_requests: int = 0
    waf_auto_blocked_count: int = 0
    queue_pending_jobs: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> OpsMetricsSnapshot:
        scraped_raw = raw.get("metrics_last_scraped_at")
        scraped_at: datetime | None = None
        if isinstance(scraped_raw, datetime):
            scraped_at = scraped_raw
        elif isinstance(scraped_raw, str) and scraped_raw.strip():
            try:
                scraped_at = datetime.fromisoformat(scraped_raw.strip().replace("Z", "+00:00"))
            except ValueError:
                scraped_at = None

        def _int(name: str) -> int:
            try:
                return max(0, int(raw.get(name) or 0))
            except (TypeError, ValueError):
                return 0

        return cls(
            metrics_last_scraped_at=scraped_at,
            rate_limiter_total_requests=_int("rate_limiter_total_requests"),
            rate_limiter_blocked_requests=_int("rate_limiter_blocked_requests"),
            waf_auto_blocked_count=_int("waf_auto_blocked_count"),
            queue_pending_jobs=_int("queue_pending_jobs"),
        )


@dataclass(frozen=True)
class AlertCondition:
    key: str
    severity: str
    summary: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AlertEvaluationSummary:
    conditions: int
    throttled: int
    dispatched: int
    failures: int


def _severity(value: float, threshold: float) -> str:
    return SEVERITY_CRITICAL if value >= threshold * 2 else SEVERITY_WARNING


def detect_conditions(
    snapshot: OpsMetricsSnapshot, *, now: datetime, config: NotificationConfig
) -> list[AlertCondition]:
    conditions: list[AlertCondition] = []

    stale_after = config.metrics_stale_after_seconds
    if snapshot.metrics_last_scraped_at is None:
        conditions.append(
            AlertCondition(
                key=METRICS_STALE,
                severity=SEVERITY_CRITICAL,
                summary="metrics endpoint has never been scraped",
            )
        )
    else:
        age = (now - to_utc(snapshot.metrics_last_scraped_at)).total_seconds()
        if age > stale_after:
            conditions.append(
                AlertCondition(
                    key=METRICS_STALE,
                    severity=(
                        SEVERITY_CRITICAL if age > stale_after * 3 else SEVERITY_WARNING
                    ),
                    summary="metrics endpoint is stale",
                    details={"age_seconds": int(age), "threshold_seconds": stale_after},
                )
            )

    if snapshot.rate_limiter_total_requests > 0:
        ratio = snapshot.rate_limiter_blocked_requests / snapshot.rate_limiter_total_requests
        threshold = config.rate_limit_blocked_ratio_threshold
        if ratio > threshold:
            conditions.append(
                AlertCondition(
                    key=RATE_LIMITER_BLOCKING_SURGE,
                    severity=_severity(ratio, threshold),
                    summary="rate limiter is blocking a surge of requests",
                    details={
                        "blocked_ratio": round(ratio, 4),
                        "blocked_requests": snapshot.rate_limiter_blocked_requests,
                    },
                )
            )

    if snapshot.waf_auto_blocked_count > config.waf_auto_block_threshold:
        conditions.append(
            AlertCondition(
                key=WAF_AUTO_BLOCK_ESCALATION,
                severity=_severity(
                    snapshot.waf_auto_blocked_count, config.waf_auto_block_threshold
                ),
                summary="WAF auto-block escalation",
                details={"auto_blocked": snapshot.waf_auto_blocked_count},
            )
        )

    if snapshot.queue_pending_jobs > config.queue_backlog_threshold:
        conditions.append(
            AlertCondition(
                key=QUEUE_BACKLOG,
                severity=_severity(
                    snapshot.queue_pending_jobs, config.queue_backlog_threshold
                ),
                summary="job queue backlog is growing",
                details={"pending_jobs": snapshot.queue_pending_jobs},
            )
        )

    return conditions


class OpsAlertService:
    def __init__(
        self,
        *,
        throttle: AlertThrottle,
        config: NotificationConfig | None = None,
        notification_service: NotificationService | None = None,
    ) -> None:
        self.throttle = throttle
        self.config = config or load_notification_config()
        self.notification_service = notification_service or NotificationService()

    def evaluate_alerts(
        self,
        session: Session,
        snapshot: OpsMetricsSnapshot,
        *,
        now: datetime | None = None,
    ) -> AlertEvaluationSummary:
        now = to_utc(now) if now is not None else now_utc()
        conditions = detect_conditions(snapshot, now=now, config=self.config)

        throttled = 0
        dispatched = 0
        failures = 0

        if conditions and not self.config.alert_recipient_ids:
            # Leave the cooldown untouched so alerts flow once recipients exist.
            logger.warning(
                "ops_alert_no_recipients",
                extra={"alert_keys": [condition.key for condition in conditions]},
            )
            return AlertEvaluationSummary(
                conditions=len(conditions), throttled=0, dispatched=0, failures=0
            )

        for condition in conditions:
            if not self.throttle.should_dispatch(condition.key, now):
                throttled += 1
                logger.debug("ops_alert_throttled", extra={"alert_key": condition.key})
                continue

            rendered = render_ops_alert(summary=condition.summary, details=condition.details)
            bypass = condition.severity == SEVERITY_CRITICAL
            for recipient_id in self.config.alert_recipient_ids:
                try:
                    self.notification_service.dispatch(
                        session,
                        NotificationEvent(
                            user_id=recipient_id,
                            category=NotificationCategory.system.value,
                            priority=(
                                NotificationPriority.critical.value
                                if bypass
                                else NotificationPriority.high.value
                            ),
                            type=f"ops.alert.{condition.key}",
                            title=rendered.title,
                            body=rendered.body,
                            payload={
                                "alertKey": condition.key,
                                "severity": condition.severity,
                                **condition.details,
                            },
                        ),
                        bypass_quiet_hours=bypass,
                        now=now,
                    )
                    dispatched += 1
                except Exception:
                    session.rollback()
                    failures += 1
                    logger.exception(
                        "ops_alert_dispatch_failed",
                        extra={"alert_key": condition.key, "user_id": recipient_id},
                    )

        return AlertEvaluationSummary(
            conditions=len(conditions),
            throttled=throttled,
            dispatched=dispatched,
            failures=failures,
        )
