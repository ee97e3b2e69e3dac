"""Keep a ChatStore in step with the ``chat:*`` socket events."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from b2b_realtime.core.exceptions import RealtimeError
from b2b_realtime.realtime.observers import Multicast, Unsubscribe

from .schemas import (
    MessageDeletedEvent,
    MessageUpdatedEvent,
    NewConversationEvent,
    NewMessageEvent,
    UserTypingEvent,
)
from .service import ChatSocketService
from .store import ChatStore

log = logging.getLogger("chat_sync")


class ChatSynchronizer:
    """Binds chat events to the store.

    ``new_conversation`` is the only event that suspends: it refreshes the
    conversation list through the REST client (push payloads lack full
    participant details) before applying the bundled first message.
    """

    def __init__(self, service: ChatSocketService, store: ChatStore, api: Any = None) -> None:
        self.service = service
        self.store = store
        self.api = api
        self._unsubscribers: List[Unsubscribe] = []
        self._changes: Multicast[Callable[[str, Optional[str]], Any]] = Multicast("chat_change")

    @property
    def attached(self) -> bool:
        return bool(self._unsubscribers)

    def attach(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.service.on_new_conversation(self._on_new_conversation),
            self.service.on_new_message(self._on_new_message),
            self.service.on_user_typing(self._on_user_typing),
            self.service.on_message_updated(self._on_message_updated),
            self.service.on_message_deleted(self._on_message_deleted),
        ]
        log.info("[CHAT SYNC] attached")

    def detach(self) -> None:
        """Stop listening. The shared connection is left untouched."""

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        log.info("[CHAT SYNC] detached")

    def on_change(self, handler: Callable[[str, Optional[str]], Any]) -> Unsubscribe:
        """Called with ``(event_name, conversation_id)`` after the store changed."""

        return self._changes.subscribe(handler)

    async def notify_change(self, event: str, conversation_id: Optional[str]) -> None:
        """Publish a change made outside the socket events (local sends)."""

        await self._changes.emit(event, conversation_id)

    async def refresh_conversations(self) -> bool:
        if self.api is None:
            return False
        conversations = await self.api.list_conversations()
        self.store.replace_conversations(conversations)
        log.info("[CHAT SYNC] conversations refreshed count=%s", len(conversations))
        await self._changes.emit("conversations", None)
        return True

    async def load_history(self, conversation_id: str, limit: int = 50, offset: int = 0) -> int:
        if self.api is None:
            return 0
        messages = await self.api.list_messages(conversation_id, limit=limit, offset=offset)
        added = self.store.load_history(conversation_id, messages)
        if added:
            await self._changes.emit("history", conversation_id)
        return added

    async def _on_new_conversation(self, event: NewConversationEvent) -> None:
        conversation = event.conversation
        try:
            refreshed = await self.refresh_conversations()
        except RealtimeError as exc:
            log.warning("[CHAT SYNC] refresh failed, using pushed conversation id=%s: %s", conversation.id, exc)
            refreshed = False

        if not refreshed or self.store.get_conversation(conversation.id) is None:
            self.store.add_conversation(conversation)

        if event.message is not None:
            self.store.apply_new_message(conversation.id, event.message)
        await self._changes.emit("new_conversation", conversation.id)

    async def _on_new_message(self, event: NewMessageEvent) -> None:
        if self.store.apply_new_message(event.conversation_id, event.message):
            await self._changes.emit("new_message", event.conversation_id)

    async def _on_user_typing(self, event: UserTypingEvent) -> None:
        self.store.apply_typing(event.conversation_id, event.user_id, event.is_typing)
        await self._changes.emit("user_typing", event.conversation_id)

    async def _on_message_updated(self, event: MessageUpdatedEvent) -> None:
        message = event.message
        if self.store.apply_message_updated(event.conversation_id, message.id, message.content, message.edited_at):
            await self._changes.emit("message_updated", event.conversation_id)

    async def _on_message_deleted(self, event: MessageDeletedEvent) -> None:
        if self.store.apply_message_deleted(event.conversation_id, event.message_id):
            await self._changes.emit("message_deleted", event.conversation_id)
