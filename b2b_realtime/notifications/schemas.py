"""Pydantic models describing notifications pushed by the realtime server."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    CONNECTION_REQUEST = "connection_request"
    CONNECTION_ACCEPTED = "connection_accepted"
    CONNECTION_REJECTED = "connection_rejected"
    POST_LIKE = "post_like"
    POST_COMMENT = "post_comment"
    POST_SHARE = "post_share"
    MENTION = "mention"
    MESSAGE = "message"
    SYSTEM = "system"


class NotificationSender(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    name: str
    avatar: str | None = None
    headline: str | None = None


class NotificationEvent(BaseModel):
    """Immutable notification record.

    Only ``is_read`` ever changes, and only from ``False`` to ``True`` through
    :meth:`mark_read`, which returns a new instance.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=False)

    id: str = Field(alias="notification_id")
    type: NotificationType
    title: str
    message: str
    sender: NotificationSender | None = None
    action_url: str | None = None
    timestamp: datetime
    is_read: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)

    def mark_read(self) -> "NotificationEvent":
        if self.is_read:
            return self
        return self.model_copy(update={"is_read": True})


class NotificationCounts(BaseModel):
    """Badge counters returned by the REST API."""

    unread_count: int = Field(default=0, ge=0)
    pending_connections_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)
