from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationConfig:
    reminder_lookahead_minutes: int = 120
    reminder_batch_size: int = 50
    alert_cooldown_seconds: int = 300
    alert_recipient_ids: tuple[int, ...] = ()
    list_cache_ttl_seconds: int = 30
    list_cache_redis_url: str | None = None
    metrics_stale_after_seconds: int = 300
    rate_limit_blocked_ratio_threshold: float = 0.2
    waf_auto_block_threshold: int = 25
    queue_backlog_threshold: int = 500


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw.strip())
        except ValueError:
            logger.warning(
                "notification_config_invalid_int",
                extra={"env_var": name, "value": raw},
            )
            value = default
    if minimum is not None and value < minimum:
        value = minimum
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning(
            "notification_config_invalid_float",
            extra={"env_var": name, "value": raw},
        )
        return default


def _parse_recipient_ids(raw: str) -> tuple[int, ...]:
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            candidate = int(part)
        except ValueError:
            continue
        if candidate > 0 and candidate not in ids:
            ids.append(candidate)
    return tuple(ids)


def load_notification_config() -> NotificationConfig:
    return NotificationConfig(
        reminder_lookahead_minutes=_env_int(
            "REMINDER_LOOKAHEAD_MINUTES", 120, minimum=5
        ),
        reminder_batch_size=_env_int("REMINDER_BATCH_SIZE", 50, minimum=1),
        alert_cooldown_seconds=_env_int("ALERT_COOLDOWN_SECONDS", 300, minimum=0),
        alert_recipient_ids=_parse_recipient_ids(
            os.getenv("OPS_ALERT_RECIPIENT_IDS", "")
        ),
        list_cache_ttl_seconds=_env_int(
            "NOTIFICATION_LIST_CACHE_TTL_SECONDS", 30, minimum=0
        ),
        list_cache_redis_url=os.getenv("NOTIFICATION_CACHE_REDIS_URL") or None,
        metrics_stale_after_seconds=_env_int(
            "OPS_METRICS_STALE_SECONDS", 300, minimum=1
        ),
        rate_limit_blocked_ratio_threshold=_env_float(
            "OPS_RATE_LIMIT_BLOCKED_RATIO", 0.2
        ),
        waf_auto_block_threshold=_env_int("OPS_WAF_AUTO_BLOCK_THRESHOLD", 25, minimum=1),
        queue_backlog_threshold=_env_int("OPS_QUEUE_BACKLOG_THRESHOLD", 500, minimum=1),
    )
