from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.schemas import (
    NotificationDispatchRequest,
    NotificationPreferenceResponse,
    NotificationPreferenceUpsertRequest,
    NotificationResponse,
)
from app.db.models import NotificationPreference, NotificationStatus
from app.db.session import get_db_session
from app.notifications.preferences import compute_delivery_channels, resolve_preference
from app.notifications.time_utils import is_quiet_hours, now_utc
from app.services.notification_preference_service import (
    NotificationPreferenceService,
    validate_user_id,
)
from app.services.notification_service import (
    NotificationEvent,
    NotificationService,
    to_public_dict,
)

router = APIRouter(tags=["notifications"])


def _preference_response(
    user_id: int, stored: NotificationPreference | None
) -> NotificationPreferenceResponse:
    resolved = resolve_preference(stored)
    return NotificationPreferenceResponse(
        user_id=user_id,
        email_enabled=resolved.email_enabled,
        push_enabled=resolved.push_enabled,
        sms_enabled=resolved.sms_enabled,
        in_app_enabled=resolved.in_app_enabled,
        digest_frequency=resolved.digest_frequency,
        quiet_hours_start=resolved.quiet_hours_start,
        quiet_hours_end=resolved.quiet_hours_end,
        timezone=resolved.timezone,
        channels=compute_delivery_channels(resolved).as_dict(),
        quiet_hours_active=is_quiet_hours(resolved, now_utc()),
    )


@router.get(
    "/users/{user_id}/notification-preferences",
    response_model=NotificationPreferenceResponse,
)
def get_notification_preferences(
    user_id: int,
    session: Session = Depends(get_db_session),
) -> NotificationPreferenceResponse:
    user_id = validate_user_id(user_id)
    stored = NotificationPreferenceService().get_preference(session, user_id=user_id)
    return _preference_response(user_id, stored)


@router.put(
    "/users/{user_id}/notification-preferences",
    response_model=NotificationPreferenceResponse,
)
def upsert_notification_preferences(
    user_id: int,
    payload: NotificationPreferenceUpsertRequest,
    session: Session = Depends(get_db_session),
) -> NotificationPreferenceResponse:
    preference = NotificationPreferenceService().upsert_preference(
        session,
        user_id=user_id,
        patch=payload.model_dump(exclude_unset=True, mode="json"),
    )
    return _preference_response(preference.user_id, preference)


@router.post(
    "/notifications",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
)
def dispatch_notification(
    payload: NotificationDispatchRequest,
    session: Session = Depends(get_db_session),
) -> NotificationResponse:
    notification = NotificationService().dispatch(
        session,
        NotificationEvent(
            user_id=payload.user_id,
            title=payload.title,
            type=payload.type,
            category=payload.category.value,
            priority=payload.priority.value,
            body=payload.body,
            payload=payload.payload,
            expires_at=payload.expires_at,
        ),
        bypass_quiet_hours=payload.bypass_quiet_hours,
    )
    return NotificationResponse(**to_public_dict(notification))


@router.get(
    "/users/{user_id}/notifications",
    response_model=list[NotificationResponse],
)
def list_notifications(
    user_id: int,
    status_filter: NotificationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_db_session),
) -> list[NotificationResponse]:
    items = NotificationService().list_notifications(
        session,
        user_id=user_id,
        status=status_filter.value if status_filter is not None else None,
        limit=limit,
    )
    return [NotificationResponse(**item) for item in items]


@router.post(
    "/users/{user_id}/notifications/{notification_id}/read",
    response_model=NotificationResponse,
)
def mark_notification_read(
    user_id: int,
    notification_id: UUID,
    session: Session = Depends(get_db_session),
) -> NotificationResponse:
    notification = NotificationService().mark_as_read(
        session, user_id=user_id, notification_id=notification_id
    )
    return NotificationResponse(**to_public_dict(notification))


@router.post(
    "/users/{user_id}/notifications/{notification_id}/dismiss",
    response_model=NotificationResponse,
)
def dismiss_notification(
    user_id: int,
    notification_id: UUID,
    session: Session = Depends(get_db_session),
) -> NotificationResponse:
    notification = NotificationService().dismiss(
        session, user_id=user_id, notification_id=notification_id
    )
    return NotificationResponse(**to_public_dict(notification))
