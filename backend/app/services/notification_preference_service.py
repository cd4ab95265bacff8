from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import DigestFrequency, NotificationPreference
from app.notifications.time_utils import is_valid_timezone, parse_time_of_day_minutes
from app.services.errors import ValidationError

_BOOLEAN_FIELDS = ("email_enabled", "push_enabled", "sms_enabled", "in_app_enabled")
_QUIET_HOURS_FIELDS = ("quiet_hours_start", "quiet_hours_end")


def validate_user_id(user_id: Any) -> int:
    if isinstance(user_id, bool) or user_id is None:
        raise ValidationError("user_id is required.")
    if isinstance(user_id, float) and not user_id.is_integer():
        raise ValidationError("user_id must be a positive integer.")
    try:
        candidate = int(user_id)
    except (TypeError, ValueError):
        raise ValidationError("user_id must be a positive integer.") from None
    if candidate <= 0:
        raise ValidationError("user_id must be a positive integer.")
    return candidate


def _normalize_time_of_day(field: str, value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        return None
    minutes = parse_time_of_day_minutes(value)
    if minutes is None:
        raise ValidationError(f"{field} must use the HH:MM format.")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class NotificationPreferenceService:
    def get_preference(
        self, session: Session, *, user_id: int
    ) -> NotificationPreference | None:
        return session.scalar(
            select(NotificationPreference).where(
                NotificationPreference.user_id == user_id
            )
        )

    def get_or_create(self, session: Session, *, user_id: int) -> NotificationPreference:
        preference = self.get_preference(session, user_id=user_id)
        if preference is not None:
            return preference

        preference = NotificationPreference(user_id=user_id, metadata_json={})
        session.add(preference)
        session.flush()
        return preference

    def upsert_preference(
        self,
        session: Session,
        *,
        user_id: Any,
        patch: dict[str, Any],
    ) -> NotificationPreference:
        user_id = validate_user_id(user_id)
        changes = self._normalize_patch(patch)

        preference = self.get_or_create(session, user_id=user_id)
        for field, value in changes.items():
            if field == "metadata":
                existing = (
                    preference.metadata_json
                    if isinstance(preference.metadata_json, dict)
                    else {}
                )
                preference.metadata_json = {**existing, **value}
            else:
                setattr(preference, field, value)

        preference.updated_at = datetime.now(UTC)
        session.add(preference)
        session.commit()
        session.refresh(preference)
        return preference

    def _normalize_patch(self, patch: dict[str, Any]) -> dict[str, Any]:
        changes: dict[str, Any] = {}

        for field in _BOOLEAN_FIELDS:
            if field in patch and patch[field] is not None:
                if not isinstance(patch[field], bool):
                    raise ValidationError(f"{field} must be a boolean.")
                changes[field] = patch[field]

        if patch.get("digest_frequency") is not None:
            frequency = str(patch["digest_frequency"]).strip().lower()
            if frequency not in {item.value for item in DigestFrequency}:
                raise ValidationError(
                    "digest_frequency must be one of: "
                    + ", ".join(item.value for item in DigestFrequency)
                )
            changes["digest_frequency"] = frequency

        for field in _QUIET_HOURS_FIELDS:
            if field in patch:
                changes[field] = _normalize_time_of_day(field, patch[field])

        metadata: dict[str, Any] = {}
        raw_metadata = patch.get("metadata")
        if raw_metadata is not None:
            if not isinstance(raw_metadata, dict):
                raise ValidationError("metadata must be an object.")
            metadata.update(raw_metadata)
        if patch.get("timezone") is not None:
            metadata["timezone"] = patch["timezone"]

        if "timezone" in metadata:
            timezone = metadata["timezone"]
            if not isinstance(timezone, str) or not is_valid_timezone(timezone.strip()):
                raise ValidationError("timezone must be a valid IANA timezone.")
            metadata["timezone"] = timezone.strip()

        if metadata:
            changes["metadata"] = metadata
        return changes
