"""Short-lived per-user cache of notification listings, shared through Redis.

Entries are keyed by ``(user_id, status, limit)``. Each user also has a
version counter; writes bump it, which orphans every cached listing of that
user in all processes at once (API workers and Celery workers alike). The
orphaned entries age out through their TTL.

Without a Redis URL the cache is disabled rather than process-local, since a
process-local copy cannot see dispatches made by the worker.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from app.notifications.config import load_notification_config

logger = logging.getLogger(__name__)

ListingKey = tuple[int, str | None, int]

DEFAULT_KEY_PREFIX = "notification-list"


class NotificationListCache:
    def __init__(
        self,
        client: Redis | None = None,
        ttl_seconds: int = 30,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.ttl_seconds > 0

    def _version_key(self, user_id: int) -> str:
        return f"{self.key_prefix}:version:{user_id}"

    def _entry_key(self, key: ListingKey, version: int) -> str:
        user_id, status, limit = key
        return f"{self.key_prefix}:{user_id}:v{version}:{status or '*'}:{limit}"

    def _current_version(self, user_id: int) -> int:
        assert self.client is not None
        raw = self.client.get(self._version_key(user_id))
        return int(raw) if raw is not None else 0

    def get(self, key: ListingKey) -> Any | None:
        if not self.enabled:
            return None
        assert self.client is not None
        try:
            version = self._current_version(key[0])
            raw = self.client.get(self._entry_key(key, version))
        except RedisError:
            logger.warning("notification_list_cache_unavailable", exc_info=True)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: ListingKey, value: Any) -> None:
        if not self.enabled:
            return
        assert self.client is not None
        try:
            version = self._current_version(key[0])
            self.client.set(
                self._entry_key(key, version), json.dumps(value), ex=self.ttl_seconds
            )
        except RedisError:
            logger.warning("notification_list_cache_unavailable", exc_info=True)

    def invalidate_user(self, user_id: int) -> int | None:
        """Bump the user's listing version and return the new one."""
        if self.client is None:
            return None
        try:
            return int(self.client.incr(self._version_key(user_id)))
        except RedisError:
            logger.warning(
                "notification_list_cache_invalidation_failed",
                extra={"user_id": user_id},
                exc_info=True,
            )
            return None


_LIST_CACHE: NotificationListCache | None = None


def configure_notification_list_cache(cache: NotificationListCache | None) -> None:
    global _LIST_CACHE
    _LIST_CACHE = cache


def get_notification_list_cache() -> NotificationListCache:
    global _LIST_CACHE
    if _LIST_CACHE is None:
        config = load_notification_config()
        client = (
            Redis.from_url(
                config.list_cache_redis_url,
                socket_timeout=2,
                retry_on_timeout=True,
                health_check_interval=60,
            )
            if config.list_cache_redis_url
            else None
        )
        _LIST_CACHE = NotificationListCache(
            client, ttl_seconds=config.list_cache_ttl_seconds
        )
    return _LIST_CACHE
