"""In-memory notification list kept in sync with the realtime socket."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .schemas import NotificationEvent

log = logging.getLogger("notifications")


class NotificationInbox:
    """Newest-first list of notifications, idempotent under redelivery."""

    def __init__(self, max_items: int | None = 200) -> None:
        self._max_items = max_items
        self._order: List[str] = []
        self._items: Dict[str, NotificationEvent] = {}

    def add(self, notification: NotificationEvent) -> bool:
        """Insert ``notification`` at the top; returns False for a duplicate id."""

        if notification.id in self._items:
            log.debug("[NOTIF DUPLICATE] id=%s", notification.id)
            return False

        self._items[notification.id] = notification
        self._order.insert(0, notification.id)
        self._trim()
        return True

    def extend(self, notifications: Iterable[NotificationEvent]) -> int:
        """Apply a history batch; returns how many entries were new."""

        return sum(1 for notification in notifications if self.add(notification))

    def mark_read(self, notification_id: str) -> bool:
        """Flip ``is_read`` to True. Returns True only on the actual transition."""

        current = self._items.get(notification_id)
        if current is None or current.is_read:
            return False
        self._items[notification_id] = current.mark_read()
        return True

    def mark_all_read(self) -> int:
        changed = 0
        for notification_id in list(self._order):
            if self.mark_read(notification_id):
                changed += 1
        return changed

    def remove(self, notification_id: str) -> bool:
        if self._items.pop(notification_id, None) is None:
            return False
        self._order.remove(notification_id)
        return True

    def clear(self) -> None:
        self._items.clear()
        self._order.clear()

    def get(self, notification_id: str) -> Optional[NotificationEvent]:
        return self._items.get(notification_id)

    @property
    def items(self) -> List[NotificationEvent]:
        return [self._items[notification_id] for notification_id in self._order]

    @property
    def unread_count(self) -> int:
        return sum(1 for notification in self._items.values() if not notification.is_read)

    def __len__(self) -> int:
        return len(self._order)

    def _trim(self) -> None:
        if self._max_items is None:
            return
        while len(self._order) > self._max_items:
            dropped = self._order.pop()
            self._items.pop(dropped, None)
