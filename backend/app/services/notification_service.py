from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.db.models import (
    Notification,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
)
from app.notifications.cache import NotificationListCache, get_notification_list_cache
from app.notifications.lifecycle import initial_status, transition
from app.notifications.preferences import compute_delivery_channels, resolve_preference
from app.notifications.time_utils import is_quiet_hours, now_utc, to_utc
from app.services.errors import ConflictError, NotFoundError, ValidationError
from app.services.notification_preference_service import (
    NotificationPreferenceService,
    validate_user_id,
)

logger = logging.getLogger(__name__)

_PRIVATE_PAYLOAD_KEY = re.compile(r"^(_|internal|private)", re.IGNORECASE)


@dataclass(frozen=True)
class NotificationEvent:
    user_id: Any
    title: str | None
    type: str | None
    category: str = NotificationCategory.system.value
    priority: str = NotificationPriority.normal.value
    body: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ValidatedEvent:
    user_id: int
    title: str
    type: str
    category: str
    priority: str
    body: str | None
    payload: dict[str, Any]
    expires_at: datetime | None


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required.")
    return value.strip()


def _require_member(value: Any, field_name: str, vocabulary: type) -> str:
    normalized = str(value).strip().lower() if value is not None else ""
    allowed = [item.value for item in vocabulary]
    if normalized not in allowed:
        raise ValidationError(f"{field_name} must be one of: {', '.join(allowed)}")
    return normalized


def validate_event(event: NotificationEvent) -> ValidatedEvent:
    user_id = validate_user_id(event.user_id)
    title = _require_text(event.title, "title")
    event_type = _require_text(event.type, "type")
    category = _require_member(event.category, "category", NotificationCategory)
    priority = _require_member(event.priority, "priority", NotificationPriority)

    if event.payload is not None and not isinstance(event.payload, dict):
        raise ValidationError("payload must be an object.")
    body = event.body.strip() if isinstance(event.body, str) and event.body.strip() else None

    return ValidatedEvent(
        user_id=user_id,
        title=title,
        type=event_type,
        category=category,
        priority=priority,
        body=body,
        payload=dict(event.payload or {}),
        expires_at=to_utc(event.expires_at) if event.expires_at else None,
    )


def sanitize_payload(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    return {
        key: value
        for key, value in payload.items()
        if not _PRIVATE_PAYLOAD_KEY.match(str(key))
    }


def to_public_dict(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "category": notification.category,
        "type": notification.type,
        "title": notification.title,
        "body": notification.body,
        "priority": notification.priority,
        "status": notification.status,
        "delivered_at": notification.delivered_at,
        "read_at": notification.read_at,
        "expires_at": notification.expires_at,
        "created_at": notification.created_at,
        "updated_at": notification.updated_at,
        "payload": sanitize_payload(notification.payload),
    }


class NotificationService:
    def __init__(
        self,
        *,
        preference_service: NotificationPreferenceService | None = None,
        list_cache: NotificationListCache | None = None,
    ) -> None:
        self.preference_service = preference_service or NotificationPreferenceService()
        self.list_cache = list_cache or get_notification_list_cache()

    def dispatch(
        self,
        session: Session,
        event: NotificationEvent,
        *,
        bypass_quiet_hours: bool = False,
        now: datetime | None = None,
        commit: bool = True,
    ) -> Notification:
        """Persist one notification for `event`.

        With `commit=False` the row is only flushed, so the caller can commit it
        together with its own writes; it must then call `invalidate_listing`.
        """
        validated = validate_event(event)
        now = to_utc(now) if now is not None else now_utc()

        stored = self.preference_service.get_preference(
            session, user_id=validated.user_id
        )
        preference = resolve_preference(stored)
        channels = compute_delivery_channels(preference)
        quiet_hours_active = (
            False if bypass_quiet_hours else is_quiet_hours(preference, now)
        )
        status = initial_status(
            channels,
            quiet_hours_active=quiet_hours_active,
            bypass_quiet_hours=bypass_quiet_hours,
        )

        notification = Notification(
            user_id=validated.user_id,
            category=validated.category,
            priority=validated.priority,
            type=validated.type,
            title=validated.title,
            body=validated.body,
            payload={
                **validated.payload,
                "channels": channels.as_dict(),
                "bypassQuietHours": bypass_quiet_hours,
            },
            status=status.value,
            delivered_at=now if status == NotificationStatus.delivered else None,
            expires_at=validated.expires_at,
            created_at=now,
            updated_at=now,
        )
        session.add(notification)
        if not commit:
            session.flush()
        else:
            session.commit()
            session.refresh(notification)
            self.invalidate_listing(validated.user_id)

        logger.info(
            "notification_dispatched",
            extra={
                "notification_id": str(notification.id),
                "user_id": validated.user_id,
                "type": validated.type,
                "status": status.value,
                "quiet_hours_active": quiet_hours_active,
                "bypass_quiet_hours": bypass_quiet_hours,
                "committed": commit,
            },
        )
        return notification

    def invalidate_listing(self, user_id: int) -> None:
        self.list_cache.invalidate_user(user_id)

    def list_notifications(
        self,
        session: Session,
        *,
        user_id: Any,
        status: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        user_id = validate_user_id(user_id)
        if status is not None:
            status = _require_member(status, "status", NotificationStatus)
        limit = max(1, min(int(limit), 200))

        cache_key = (user_id, status, limit)
        cached = self.list_cache.get(cache_key)
        if cached is not None:
            return cached

        stmt = select(Notification).where(Notification.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Notification.status == status)
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)

        items = to_jsonable_python(
            [to_public_dict(row) for row in session.scalars(stmt).all()]
        )
        self.list_cache.set(cache_key, items)
        return items

    def mark_as_read(
        self,
        session: Session,
        *,
        user_id: Any,
        notification_id: UUID,
        now: datetime | None = None,
    ) -> Notification:
        now = to_utc(now) if now is not None else now_utc()
        return self._apply_transition(
            session,
            user_id=user_id,
            notification_id=notification_id,
            target=NotificationStatus.read,
            now=now,
        )

    def dismiss(
        self,
        session: Session,
        *,
        user_id: Any,
        notification_id: UUID,
        now: datetime | None = None,
    ) -> Notification:
        now = to_utc(now) if now is not None else now_utc()
        return self._apply_transition(
            session,
            user_id=user_id,
            notification_id=notification_id,
            target=NotificationStatus.dismissed,
            now=now,
        )

    def mark_delivered(
        self,
        session: Session,
        *,
        user_id: Any,
        notification_id: UUID,
        now: datetime | None = None,
    ) -> Notification:
        now = to_utc(now) if now is not None else now_utc()
        return self._apply_transition(
            session,
            user_id=user_id,
            notification_id=notification_id,
            target=NotificationStatus.delivered,
            now=now,
        )

    def _apply_transition(
        self,
        session: Session,
        *,
        user_id: Any,
        notification_id: UUID,
        target: NotificationStatus,
        now: datetime,
    ) -> Notification:
        user_id = validate_user_id(user_id)
        notification = session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError(
                f"Notification '{notification_id}' not found for user '{user_id}'",
                code="NOTIFICATION_NOT_FOUND",
            )

        notification.status = transition(notification.status, target).value
        if target == NotificationStatus.read:
            notification.read_at = now
        elif target == NotificationStatus.delivered:
            notification.delivered_at = now
        notification.updated_at = now
        session.add(notification)

        try:
            session.commit()
        except StaleDataError:
            session.rollback()
            raise ConflictError(
                f"Notification '{notification_id}' was modified concurrently",
                code="NOTIFICATION_CONFLICT",
            ) from None

        session.refresh(notification)
        self.invalidate_listing(user_id)
        return notification
