"""Realtime notification models, payload normalisation and inbox."""

from .inbox import NotificationInbox
from .normalize import from_connection_payload, from_interaction_payload, parse_notification
from .schemas import NotificationCounts, NotificationEvent, NotificationSender, NotificationType

__all__ = [
    "NotificationInbox",
    "NotificationCounts",
    "NotificationEvent",
    "NotificationSender",
    "NotificationType",
    "from_connection_payload",
    "from_interaction_payload",
    "parse_notification",
]
