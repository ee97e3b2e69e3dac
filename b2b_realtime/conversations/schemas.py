"""Pydantic models for chat conversations, messages and socket events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationParticipant(BaseModel):
    """Participant as returned by the conversation list endpoint."""

    model_config = ConfigDict(extra="allow", frozen=True)

    user_id: str
    id: str | None = None
    conversation_id: str | None = None
    joined_at: datetime | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None

    @property
    def display_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or self.email or self.user_id


class ChatMessage(BaseModel):
    """A single chat message.

    ``pending`` entries are local, optimistic copies created before the server
    acknowledged them; their ``id`` is the client generated
    ``client_message_id``. ``is_deleted`` marks a tombstone.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    id: str
    conversation_id: str
    sender_id: str
    content: Any = None
    created_at: datetime = Field(default_factory=_utcnow)
    edited_at: datetime | None = None
    is_forwarded: bool = False
    is_deleted: bool = False
    pending: bool = False
    failed: bool = False
    client_message_id: str | None = None
    sender_email: str | None = None
    sender_first_name: str | None = None
    sender_last_name: str | None = None
    sender_avatar: str | None = None


class Conversation(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    id: str
    is_group: bool = False
    title: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    participants: List[ConversationParticipant] = Field(default_factory=list)
    last_message: ChatMessage | None = Field(default=None, alias="lastMessage")
    message_count: int | None = Field(default=None, alias="messageCount")


# Inbound ``chat:*`` events. The server uses camelCase keys on the envelope
# and snake_case inside the message records.


class _ChatEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class NewConversationEvent(_ChatEvent):
    conversation: Conversation
    message: ChatMessage | None = None


class NewMessageEvent(_ChatEvent):
    conversation_id: str = Field(alias="conversationId")
    message: ChatMessage
    sender_info: Dict[str, Any] | None = Field(default=None, alias="senderInfo")


class UserTypingEvent(_ChatEvent):
    conversation_id: str = Field(alias="conversationId")
    user_id: str = Field(alias="userId")
    is_typing: bool = Field(alias="isTyping")


class MessageUpdatedEvent(_ChatEvent):
    conversation_id: str = Field(alias="conversationId")
    message: ChatMessage


class MessageDeletedEvent(_ChatEvent):
    conversation_id: str = Field(alias="conversationId")
    message_id: str = Field(alias="messageId")
