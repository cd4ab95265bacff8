from __future__ import annotations

import threading
from datetime import datetime, timedelta

from app.notifications.time_utils import to_utc

DEFAULT_ALERT_COOLDOWN = timedelta(minutes=5)


class AlertThrottle:
    """Per-key cooldown gate for automated alerts.

    State is local to the process. Replicas behind a load balancer each keep
    their own clock, so the effective rate across a fleet is higher than
    one alert per cooldown.
    """

    def __init__(self, cooldown: timedelta = DEFAULT_ALERT_COOLDOWN) -> None:
        self.cooldown = cooldown
        self._last_dispatch: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def should_dispatch(self, key: str, now: datetime) -> bool:
        now = to_utc(now)
        with self._lock:
            last = self._last_dispatch.get(key)
            if last is not None and now - last < self.cooldown:
                return False
            self._last_dispatch[key] = now
            return True

    def last_dispatch(self, key: str) -> datetime | None:
        with self._lock:
            return self._last_dispatch.get(key)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._last_dispatch.clear()
            else:
                self._last_dispatch.pop(key, None)
