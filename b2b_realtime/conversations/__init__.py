"""Chat state, commands and socket synchronisation."""

from .schemas import (
    ChatMessage,
    Conversation,
    ConversationParticipant,
    MessageDeletedEvent,
    MessageUpdatedEvent,
    NewConversationEvent,
    NewMessageEvent,
    UserTypingEvent,
)
from .service import ChatSocketService, StartConversationResult
from .store import ChatStore
from .sync import ChatSynchronizer

__all__ = [
    "ChatMessage",
    "ChatSocketService",
    "ChatStore",
    "ChatSynchronizer",
    "Conversation",
    "ConversationParticipant",
    "MessageDeletedEvent",
    "MessageUpdatedEvent",
    "NewConversationEvent",
    "NewMessageEvent",
    "StartConversationResult",
    "UserTypingEvent",
]
