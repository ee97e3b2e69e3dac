"""Chat commands and typed chat subscriptions over the shared connection."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from b2b_realtime.core.exceptions import CommandRejectedError, NotConnectedError, RealtimeError
from b2b_realtime.realtime.connection import ConnectionManager
from b2b_realtime.realtime.observers import Unsubscribe

from .schemas import (
    ChatMessage,
    Conversation,
    MessageDeletedEvent,
    MessageUpdatedEvent,
    NewConversationEvent,
    NewMessageEvent,
    UserTypingEvent,
)

log = logging.getLogger("chat_sync")

E = TypeVar("E", bound=BaseModel)

NEW_CONVERSATION = "chat:new_conversation"
NEW_MESSAGE = "chat:new_message"
USER_TYPING = "chat:user_typing"
MESSAGE_UPDATED = "chat:message_updated"
MESSAGE_DELETED = "chat:message_deleted"


@dataclass(frozen=True)
class StartConversationResult:
    conversation: Conversation
    message: Optional[ChatMessage]
    is_new: bool


class ChatSocketService:
    """Ack based ``chat:*`` commands. Does not own the connection."""

    def __init__(self, connection: ConnectionManager, ack_timeout: float | None = None) -> None:
        self.connection = connection
        self.ack_timeout = ack_timeout

    # --------------------------------------------------------------- commands

    async def start_conversation(self, recipient_id: str, initial_message: Any = None) -> StartConversationResult:
        payload = {"recipientId": recipient_id}
        if initial_message is not None:
            payload["initialMessage"] = initial_message
        response = await self._call("chat:start_conversation", payload)
        message = response.get("message")
        return StartConversationResult(
            conversation=Conversation.model_validate(_require(response, "conversation", "chat:start_conversation")),
            message=ChatMessage.model_validate(message) if message else None,
            is_new=bool(response.get("isNew")),
        )

    async def send_message(
        self,
        conversation_id: str,
        content: Any,
        *,
        is_forwarded: bool = False,
        client_message_id: str | None = None,
    ) -> ChatMessage:
        payload = {"conversationId": conversation_id, "content": content, "isForwarded": is_forwarded}
        if client_message_id:
            payload["clientMessageId"] = client_message_id
        response = await self._call("chat:send_message", payload)
        message = dict(_require(response, "message", "chat:send_message"))
        if client_message_id and not message.get("client_message_id"):
            message["client_message_id"] = client_message_id
        return ChatMessage.model_validate(message)

    async def join_conversation(self, conversation_id: str) -> Conversation:
        response = await self._call("chat:join_conversation", {"conversationId": conversation_id})
        return Conversation.model_validate(_require(response, "conversationDetails", "chat:join_conversation"))

    async def leave_conversation(self, conversation_id: str) -> None:
        await self._call("chat:leave_conversation", {"conversationId": conversation_id})

    async def update_message(self, message_id: str, content: Any) -> ChatMessage:
        response = await self._call("chat:update_message", {"messageId": message_id, "content": content})
        return ChatMessage.model_validate(_require(response, "message", "chat:update_message"))

    async def delete_message(self, message_id: str) -> str:
        response = await self._call("chat:delete_message", {"messageId": message_id})
        return str(response.get("messageId") or message_id)

    async def send_typing(self, conversation_id: str, is_typing: bool) -> bool:
        """Fire-and-forget typing indicator; silently skipped when offline."""

        if not self.connection.connected:
            return False
        await self.connection.emit("chat:typing", {"conversationId": conversation_id, "isTyping": is_typing})
        return True

    # ---------------------------------------------------------- subscriptions

    def on_new_conversation(self, handler: Callable[[NewConversationEvent], Any]) -> Unsubscribe:
        return self._subscribe(NEW_CONVERSATION, NewConversationEvent, handler)

    def on_new_message(self, handler: Callable[[NewMessageEvent], Any]) -> Unsubscribe:
        return self._subscribe(NEW_MESSAGE, NewMessageEvent, handler)

    def on_user_typing(self, handler: Callable[[UserTypingEvent], Any]) -> Unsubscribe:
        return self._subscribe(USER_TYPING, UserTypingEvent, handler)

    def on_message_updated(self, handler: Callable[[MessageUpdatedEvent], Any]) -> Unsubscribe:
        return self._subscribe(MESSAGE_UPDATED, MessageUpdatedEvent, handler)

    def on_message_deleted(self, handler: Callable[[MessageDeletedEvent], Any]) -> Unsubscribe:
        return self._subscribe(MESSAGE_DELETED, MessageDeletedEvent, handler)

    # -------------------------------------------------------------- internals

    async def _call(self, event: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        if not self.connection.connected:
            raise NotConnectedError(f"Socket not connected, cannot call {event}")

        response = await self.connection.call(event, dict(payload), timeout=self.ack_timeout)
        if not isinstance(response, Mapping) or not response.get("success"):
            error = response.get("error") if isinstance(response, Mapping) else None
            log.warning("[CHAT COMMAND REJECTED] event=%s error=%s", event, error)
            raise CommandRejectedError(event, error)
        return response

    def _subscribe(self, event: str, model: Type[E], handler: Callable[[E], Any]) -> Unsubscribe:
        async def relay(payload: Any) -> None:
            parsed = parse_chat_event(event, model, payload)
            if parsed is None:
                return
            result = handler(parsed)
            if inspect.isawaitable(result):
                await result

        return self.connection.on_event(event, relay)


def parse_chat_event(event: str, model: Type[E], payload: Any) -> Optional[E]:
    """Validate a raw ``chat:*`` payload; malformed ones are logged and dropped."""

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        log.warning("[CHAT DROP] event=%s malformed payload: %s", event, exc.errors()[:3])
        return None


def _require(response: Mapping[str, Any], key: str, event: str) -> Any:
    value = response.get(key)
    if not value:
        raise RealtimeError(f"{event} acknowledgement is missing {key!r}")
    return value
