"""In-memory projection of conversations, messages and typing indicators.

The store is mutated only by inbound chat events and a handful of local
actions. Unread counters are never stored: they are derived from the message
lists, the per-conversation set of seen message ids and the active
conversation pointer.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, MutableMapping, MutableSet, Optional

from .schemas import ChatMessage, Conversation

log = logging.getLogger("chat_sync")


class ChatStore:
    """Consistent, idempotent view over the chat events of one session."""

    def __init__(self, current_user_id: str | None = None) -> None:
        self.current_user_id = current_user_id
        self.active_conversation_id: Optional[str] = None
        self._conversations: Dict[str, Conversation] = {}
        self._order: List[str] = []
        self._messages: MutableMapping[str, Dict[str, ChatMessage]] = {}
        self._seen: MutableMapping[str, MutableSet[str]] = {}
        self._typing: MutableMapping[str, MutableSet[str]] = {}

    # ---------------------------------------------------------- conversations

    def replace_conversations(self, conversations: Iterable[Conversation]) -> None:
        """Replace the conversation list with a fresh server copy."""

        self._conversations = {}
        self._order = []
        for conversation in conversations:
            if conversation.id in self._conversations:
                continue
            self._conversations[conversation.id] = conversation
            self._order.append(conversation.id)

    def add_conversation(self, conversation: Conversation) -> bool:
        """Insert a conversation at the top; a known id is left untouched."""

        if conversation.id in self._conversations:
            return False
        self._conversations[conversation.id] = conversation
        self._order.insert(0, conversation.id)
        return True

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    @property
    def conversations(self) -> List[Conversation]:
        return [self._conversations[conversation_id] for conversation_id in self._order]

    def open_conversation(self, conversation_id: str) -> None:
        """Make ``conversation_id`` active and mark everything in it as seen."""

        self.active_conversation_id = conversation_id
        self._mark_seen(conversation_id)

    def close_conversation(self) -> None:
        self.active_conversation_id = None

    # --------------------------------------------------------------- messages

    def apply_new_message(self, conversation_id: str, message: ChatMessage) -> bool:
        """Merge an inbound message. Returns False when it was a redelivery."""

        messages = self._messages.setdefault(conversation_id, {})
        client_id = message.client_message_id
        if client_id and self._is_reconcilable(messages, client_id, message):
            self._replace(conversation_id, client_id, message)
        elif message.id in messages:
            log.debug("[CHAT DUPLICATE] conversation=%s message=%s", conversation_id, message.id)
            return False
        else:
            messages[message.id] = message

        if self._is_seen_on_arrival(conversation_id, message):
            self._seen.setdefault(conversation_id, set()).add(message.id)
        self._touch(conversation_id, message)
        return True

    def apply_message_updated(
        self,
        conversation_id: str,
        message_id: str,
        content: Any,
        edited_at: datetime | None = None,
    ) -> bool:
        """Apply an edit. Unknown or tombstoned messages are ignored."""

        current = self._messages.get(conversation_id, {}).get(message_id)
        if current is None:
            log.info("[CHAT IGNORE] update for unknown message conversation=%s message=%s", conversation_id, message_id)
            return False
        if current.is_deleted:
            log.info("[CHAT IGNORE] update for deleted message conversation=%s message=%s", conversation_id, message_id)
            return False

        updated = current.model_copy(update={"content": content, "edited_at": edited_at})
        self._messages[conversation_id][message_id] = updated
        self._refresh_last_message(conversation_id, updated)
        return True

    def apply_message_deleted(self, conversation_id: str, message_id: str) -> bool:
        """Tombstone a message. The transition is terminal."""

        current = self._messages.get(conversation_id, {}).get(message_id)
        if current is None:
            log.info("[CHAT IGNORE] delete for unknown message conversation=%s message=%s", conversation_id, message_id)
            return False
        if current.is_deleted:
            return False

        tombstone = current.model_copy(update={"is_deleted": True, "content": None})
        self._messages[conversation_id][message_id] = tombstone
        self._refresh_last_message(conversation_id, tombstone)
        return True

    def load_history(self, conversation_id: str, messages: Iterable[ChatMessage]) -> int:
        """Prepend older server messages; ids already present are skipped."""

        existing = self._messages.get(conversation_id, {})
        older: Dict[str, ChatMessage] = {}
        for message in messages:
            if message.id in existing or message.id in older:
                continue
            older[message.id] = message

        if older:
            self._messages[conversation_id] = {**older, **existing}
            self._seen.setdefault(conversation_id, set()).update(older)
        return len(older)

    # ------------------------------------------------------------- optimistic

    def add_pending_message(
        self,
        conversation_id: str,
        content: Any,
        *,
        sender_id: str | None = None,
        client_message_id: str | None = None,
        is_forwarded: bool = False,
    ) -> ChatMessage:
        """Record a locally sent message before the server confirms it."""

        client_id = client_message_id or f"local-{uuid.uuid4().hex}"
        message = ChatMessage(
            id=client_id,
            client_message_id=client_id,
            conversation_id=conversation_id,
            sender_id=sender_id or self.current_user_id or "me",
            content=content,
            is_forwarded=is_forwarded,
            pending=True,
        )
        self._messages.setdefault(conversation_id, {})[client_id] = message
        self._seen.setdefault(conversation_id, set()).add(client_id)
        self._touch(conversation_id, message)
        return message

    def confirm_pending(self, client_message_id: str, message: ChatMessage) -> bool:
        """Swap the pending entry for the server's copy, keeping its position."""

        conversation_id = message.conversation_id
        messages = self._messages.setdefault(conversation_id, {})

        if self._is_reconcilable(messages, client_message_id, message):
            self._replace(conversation_id, client_message_id, message)
            self._seen.setdefault(conversation_id, set()).add(message.id)
            self._touch(conversation_id, message)
            return True

        if message.id in messages:
            # the echo already reconciled it; drop a leftover local copy
            leftover = messages.get(client_message_id)
            if client_message_id != message.id and leftover is not None and (leftover.pending or leftover.failed):
                del messages[client_message_id]
            return False

        return self.apply_new_message(conversation_id, message)

    def fail_pending(self, client_message_id: str) -> bool:
        for conversation_id, messages in self._messages.items():
            current = messages.get(client_message_id)
            if current is not None and current.pending:
                messages[client_message_id] = current.model_copy(update={"pending": False, "failed": True})
                log.warning("[CHAT SEND FAILED] conversation=%s client_id=%s", conversation_id, client_message_id)
                return True
        return False

    # ----------------------------------------------------------------- typing

    def apply_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        users = self._typing.setdefault(conversation_id, set())
        if is_typing:
            users.add(user_id)
        else:
            users.discard(user_id)
            if not users:
                self._typing.pop(conversation_id, None)

    def typing_users(self, conversation_id: str) -> List[str]:
        return sorted(self._typing.get(conversation_id, ()))

    # ---------------------------------------------------------- derived state

    def messages(self, conversation_id: str, include_deleted: bool = False) -> List[ChatMessage]:
        messages = self._messages.get(conversation_id, {}).values()
        if include_deleted:
            return list(messages)
        return [message for message in messages if not message.is_deleted]

    def get_message(self, conversation_id: str, message_id: str) -> Optional[ChatMessage]:
        return self._messages.get(conversation_id, {}).get(message_id)

    def unread_count(self, conversation_id: str) -> int:
        if conversation_id == self.active_conversation_id:
            return 0
        seen = self._seen.get(conversation_id, set())
        return sum(
            1
            for message in self._messages.get(conversation_id, {}).values()
            if message.id not in seen and not message.is_deleted and not self._is_own(message)
        )

    def unread_counts(self) -> Dict[str, int]:
        conversation_ids = list(self._order) + [cid for cid in self._messages if cid not in self._conversations]
        counts = {conversation_id: self.unread_count(conversation_id) for conversation_id in conversation_ids}
        return {conversation_id: count for conversation_id, count in counts.items() if count}

    def total_unread(self) -> int:
        return sum(self.unread_counts().values())

    def snapshot(self) -> Dict[str, Any]:
        """Serializable state for the presentation layer."""

        return {
            "active_conversation_id": self.active_conversation_id,
            "conversations": [
                {
                    **conversation.model_dump(mode="json"),
                    "unread_count": self.unread_count(conversation.id),
                    "typing_users": self.typing_users(conversation.id),
                }
                for conversation in self.conversations
            ],
            "unread_counts": self.unread_counts(),
            "total_unread": self.total_unread(),
        }

    # -------------------------------------------------------------- internals

    def _is_own(self, message: ChatMessage) -> bool:
        return self.current_user_id is not None and message.sender_id == self.current_user_id

    def _is_seen_on_arrival(self, conversation_id: str, message: ChatMessage) -> bool:
        return conversation_id == self.active_conversation_id or self._is_own(message)

    @staticmethod
    def _is_reconcilable(messages: Dict[str, ChatMessage], client_id: str, message: ChatMessage) -> bool:
        local = messages.get(client_id)
        if local is None or not (local.pending or local.failed):
            return False
        return message.id == client_id or message.id not in messages

    def _mark_seen(self, conversation_id: str) -> None:
        self._seen.setdefault(conversation_id, set()).update(self._messages.get(conversation_id, {}))

    def _replace(self, conversation_id: str, old_id: str, message: ChatMessage) -> None:
        messages = self._messages[conversation_id]
        self._messages[conversation_id] = {
            (message.id if key == old_id else key): (message if key == old_id else value)
            for key, value in messages.items()
        }
        seen = self._seen.get(conversation_id)
        if seen is not None and old_id in seen:
            seen.discard(old_id)
            seen.add(message.id)

    def _touch(self, conversation_id: str, message: ChatMessage) -> None:
        """Update the last message snapshot and move the conversation to the top."""

        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return
        self._conversations[conversation_id] = conversation.model_copy(update={"last_message": message})
        self._order.remove(conversation_id)
        self._order.insert(0, conversation_id)

    def _refresh_last_message(self, conversation_id: str, message: ChatMessage) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.last_message is None:
            return
        if conversation.last_message.id == message.id:
            self._conversations[conversation_id] = conversation.model_copy(update={"last_message": message})
