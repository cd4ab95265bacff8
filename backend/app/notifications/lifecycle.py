from __future__ import annotations

from app.db.models import NotificationStatus
from app.notifications.preferences import DeliveryChannels
from app.services.errors import InvalidTransitionError

TERMINAL_STATUSES = frozenset({NotificationStatus.read, NotificationStatus.dismissed})

ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.pending: frozenset(
        {
            NotificationStatus.delivered,
            NotificationStatus.read,
            NotificationStatus.dismissed,
        }
    ),
    NotificationStatus.delivered: frozenset(
        {NotificationStatus.read, NotificationStatus.dismissed}
    ),
    NotificationStatus.read: frozenset(),
    NotificationStatus.dismissed: frozenset(),
}


def initial_status(
    channels: DeliveryChannels,
    *,
    quiet_hours_active: bool,
    bypass_quiet_hours: bool,
) -> NotificationStatus:
    # Only the in-app channel drives the status.
    if not channels.in_app:
        return NotificationStatus.dismissed
    if quiet_hours_active and not bypass_quiet_hours:
        return NotificationStatus.pending
    return NotificationStatus.delivered


def transition(
    current: NotificationStatus | str, target: NotificationStatus | str
) -> NotificationStatus:
    current_status = NotificationStatus(current)
    target_status = NotificationStatus(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status.value, target_status.value)
    return target_status
