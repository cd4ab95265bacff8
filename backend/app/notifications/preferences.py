"""Resolved notification preferences and delivery channel selection.

A stored ``NotificationPreference`` row may be missing entirely or carry
``None`` for individual toggles. Everything downstream works on a
``ResolvedPreference`` built once by :func:`resolve_preference`, so the
default policy lives in a single place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.db.models import DigestFrequency, NotificationPreference

DEFAULT_TIMEZONE = "UTC"


@dataclass(frozen=True)
class ResolvedPreference:
    email_enabled: bool
    push_enabled: bool
    sms_enabled: bool
    in_app_enabled: bool
    digest_frequency: str
    quiet_hours_start: str | None
    quiet_hours_end: str | None
    timezone: str


DEFAULT_PREFERENCE = ResolvedPreference(
    email_enabled=True,
    push_enabled=True,
    sms_enabled=False,
    in_app_enabled=True,
    digest_frequency=DigestFrequency.immediate.value,
    quiet_hours_start=None,
    quiet_hours_end=None,
    timezone=DEFAULT_TIMEZONE,
)


@dataclass(frozen=True)
class DeliveryChannels:
    email: bool
    push: bool
    sms: bool
    in_app: bool

    def as_dict(self) -> dict[str, bool]:
        return {
            "email": self.email,
            "push": self.push,
            "sms": self.sms,
            "inApp": self.in_app,
        }


def _pick(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def _stored_timezone(stored: NotificationPreference) -> str | None:
    metadata = stored.metadata_json if isinstance(stored.metadata_json, dict) else {}
    timezone = metadata.get("timezone")
    if isinstance(timezone, str) and timezone.strip():
        return timezone.strip()
    return None


def resolve_preference(
    stored: NotificationPreference | None,
    defaults: ResolvedPreference = DEFAULT_PREFERENCE,
) -> ResolvedPreference:
    if stored is None:
        return defaults

    return ResolvedPreference(
        email_enabled=_pick(stored.email_enabled, defaults.email_enabled),
        push_enabled=_pick(stored.push_enabled, defaults.push_enabled),
        sms_enabled=_pick(stored.sms_enabled, defaults.sms_enabled),
        in_app_enabled=_pick(stored.in_app_enabled, defaults.in_app_enabled),
        digest_frequency=_pick(stored.digest_frequency, defaults.digest_frequency),
        quiet_hours_start=_pick(stored.quiet_hours_start, defaults.quiet_hours_start),
        quiet_hours_end=_pick(stored.quiet_hours_end, defaults.quiet_hours_end),
        timezone=_pick(_stored_timezone(stored), defaults.timezone),
    )


def compute_delivery_channels(
    preference: ResolvedPreference | NotificationPreference | None,
) -> DeliveryChannels:
    if not isinstance(preference, ResolvedPreference):
        preference = resolve_preference(preference)
    return DeliveryChannels(
        email=bool(preference.email_enabled),
        push=bool(preference.push_enabled),
        sms=bool(preference.sms_enabled),
        in_app=bool(preference.in_app_enabled),
    )
