from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.db.models import (
    DigestFrequency,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
)


class NotificationPreferenceUpsertRequest(BaseModel):
    email_enabled: bool | None = None
    push_enabled: bool | None = None
    sms_enabled: bool | None = None
    in_app_enabled: bool | None = None
    digest_frequency: DigestFrequency | None = None
    quiet_hours_start: str | None = Field(default=None, max_length=8)
    quiet_hours_end: str | None = Field(default=None, max_length=8)
    timezone: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] | None = None


class NotificationPreferenceResponse(BaseModel):
    user_id: int
    email_enabled: bool
    push_enabled: bool
    sms_enabled: bool
    in_app_enabled: bool
    digest_frequency: str
    quiet_hours_start: str | None
    quiet_hours_end: str | None
    timezone: str
    channels: dict[str, bool]
    quiet_hours_active: bool


class NotificationDispatchRequest(BaseModel):
    user_id: int | None = None
    title: str | None = None
    type: str | None = None
    category: NotificationCategory = NotificationCategory.system
    priority: NotificationPriority = NotificationPriority.normal
    body: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime | None = None
    bypass_quiet_hours: bool = False


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: int
    category: str
    type: str
    title: str
    body: str | None
    priority: str
    status: NotificationStatus
    delivered_at: datetime | None
    read_at: datetime | None
    expires_at: datetime | None
    created_at: datetime
    updated_at: datetime
    payload: dict[str, Any] | None = None


class ErrorEnvelope(BaseModel):
    error: dict[str, Any]
