"""Turn the server's heterogeneous notification payloads into NotificationEvent.

The server emits three shapes:

- ``notification``: already a full notification record;
- ``connection:notification``: connection request/accept/reject with a
  ``senderProfile`` block and optional ``metadata.notificationId``;
- ``interaction:notification``: post like/comment/share with an
  ``interactorProfile`` block and no notification identifier.

Every function raises ``ValueError`` (pydantic's ``ValidationError`` included)
when the payload cannot be interpreted; callers log and drop those.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from .schemas import NotificationEvent, NotificationSender, NotificationType

_CONNECTION_TITLES = {
    NotificationType.CONNECTION_REQUEST: "New Connection Request",
    NotificationType.CONNECTION_ACCEPTED: "Connection Accepted",
    NotificationType.CONNECTION_REJECTED: "Connection Rejected",
}

_INTERACTION_TYPES = {
    "like": NotificationType.POST_LIKE,
    "comment": NotificationType.POST_COMMENT,
    "reply": NotificationType.POST_COMMENT,
    "share": NotificationType.POST_SHARE,
}

_INTERACTION_TITLES = {
    "like": "Post Liked",
    "comment": "New Comment",
    "reply": "New Reply",
    "share": "Post Shared",
    "save": "Post Saved",
    "report": "Post Reported",
}


def coerce_type(value: Any) -> NotificationType:
    """Map a wire type to NotificationType; unknown values become ``system``."""

    try:
        return NotificationType(value)
    except ValueError:
        return NotificationType.SYSTEM


def parse_notification(payload: Any) -> NotificationEvent:
    """Validate a full notification record."""

    data = _require_mapping(payload)
    data["type"] = coerce_type(data.get("type"))
    data.setdefault("timestamp", _utcnow())
    return NotificationEvent.model_validate(data)


def from_connection_payload(payload: Any) -> NotificationEvent:
    data = _require_mapping(payload)

    # Some server paths already send a complete record.
    if data.get("notification_id") and data.get("title"):
        return parse_notification(data)

    kind = coerce_type(data.get("type"))
    profile = data.get("senderProfile") or {}
    metadata = data.get("metadata") or {}
    sender_id = str(data.get("senderId") or "unknown")

    sender = data.get("sender") or {
        "user_id": sender_id,
        "name": _full_name(profile) or data.get("senderName") or "User",
        "avatar": profile.get("avatar") or data.get("senderAvatar"),
        "headline": profile.get("headline") or data.get("senderHeadline"),
    }

    notification_id = (
        metadata.get("notificationId")
        or data.get("notificationId")
        or data.get("notification_id")
        or f"conn-{_millis()}"
    )

    return NotificationEvent(
        notification_id=str(notification_id),
        type=kind,
        title=_CONNECTION_TITLES.get(kind, "Connection Update"),
        message=data.get("message") or "Connection update",
        sender=NotificationSender.model_validate(sender),
        action_url=_connection_action_url(kind, sender_id),
        timestamp=data.get("timestamp") or _utcnow(),
        is_read=False,
        data=dict(metadata or data.get("data") or {}),
    )


def from_interaction_payload(payload: Any) -> NotificationEvent:
    data = _require_mapping(payload)

    interaction = str(data.get("type") or "")
    profile = data.get("interactorProfile") or {}
    name = _full_name(profile) or data.get("interactorName") or "Someone"
    post_id = data.get("postId")

    return NotificationEvent(
        notification_id=f"interact-{post_id or ''}-{_millis()}",
        type=_INTERACTION_TYPES.get(interaction, NotificationType.SYSTEM),
        title=_INTERACTION_TITLES.get(interaction, "Post Interaction"),
        message=data.get("message") or f"{name} {interaction}d your post",
        sender=NotificationSender(
            user_id=str(data.get("interactorId") or "unknown"),
            name=name,
            avatar=profile.get("avatar"),
            headline=profile.get("headline"),
        ),
        action_url=f"/posts/{post_id}" if post_id else "/feed",
        timestamp=data.get("timestamp") or _utcnow(),
        is_read=False,
        data=dict(data.get("metadata") or data.get("data") or {}),
    )


def _connection_action_url(kind: NotificationType, sender_id: str) -> str:
    if kind == NotificationType.CONNECTION_REQUEST:
        return "/connections?tab=invitations"
    if kind in (NotificationType.CONNECTION_ACCEPTED, NotificationType.CONNECTION_REJECTED):
        return f"/user/{sender_id}"
    return "/connections"


def _full_name(profile: Mapping[str, Any]) -> str | None:
    first = profile.get("firstName")
    last = profile.get("lastName")
    if first and last:
        return f"{first} {last}"
    return None


def _require_mapping(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValueError(f"expected an object payload, got {type(payload).__name__}")
    return dict(payload)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _millis() -> int:
    return int(_utcnow().timestamp() * 1000)
