"""Test doubles and factories."""

from __future__ import annotations

import asyncio
import itertools
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from jose import jwt
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from b2b_realtime.conversations.schemas import ChatMessage, Conversation

_ids = itertools.count(1)
_BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeTransport:
    """In-memory stand-in for SocketIOTransport.

    ``fail_times`` makes the next N ``connect`` calls fail; ``refusal`` makes
    the failure look like a server side auth refusal. Tests push server events
    with :meth:`fire` and simulate a network drop with :meth:`drop`.
    """

    def __init__(self, fail_times: int = 0, refusal: Optional[str] = None) -> None:
        self.handlers: Dict[str, Callable[..., Any]] = {}
        self.connected = False
        self.sid: Optional[str] = None
        self.fail_times = fail_times
        self.refusal = refusal
        self.connect_calls: List[str] = []
        self.disconnect_calls = 0
        self.emitted: List[Tuple[str, Any]] = []
        self.calls: List[Tuple[str, Any]] = []
        self.ack_responses: Dict[str, Any] = {}
        self.pending_connects = 0
        self._held: List[asyncio.Event] = []

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers[event] = handler

    def hold_next_connect(self) -> asyncio.Event:
        """Make the next connect() wait until the returned event is set."""

        gate = asyncio.Event()
        self._held.append(gate)
        return gate

    async def wait_for_pending_connect(self) -> None:
        while not self.pending_connects:
            await asyncio.sleep(0)

    async def connect(self, token: str) -> None:
        self.connect_calls.append(token)
        if self._held:
            gate = self._held.pop(0)
            self.pending_connects += 1
            try:
                await gate.wait()
            finally:
                self.pending_connects -= 1
        if self.fail_times > 0:
            self.fail_times -= 1
            if self.refusal:
                await self.fire("connect_error", {"message": self.refusal})
            raise SocketIOConnectionError("Connection refused by the server")
        self.connected = True
        self.sid = f"sid-{len(self.connect_calls)}"

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    async def emit(self, event: str, data: Any) -> None:
        self.emitted.append((event, data))

    async def call(self, event: str, data: Any, timeout: Optional[float] = None) -> Any:
        self.calls.append((event, data))
        response = self.ack_responses.get(event)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(data)
        return response

    async def fire(self, event: str, *args: Any) -> None:
        handler = self.handlers.get(event)
        if handler is not None:
            await handler(*args)

    async def drop(self, reason: str = "transport close") -> None:
        self.connected = False
        await self.fire("disconnect", reason)

    def emitted_types(self) -> List[Any]:
        return [data.get("type") for event, data in self.emitted if event == "message"]


class SleepRecorder:
    """Replaces asyncio.sleep in the reconnect timer and records the delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeApi:
    def __init__(self, conversations: Optional[List[Conversation]] = None) -> None:
        self.conversations = list(conversations or [])
        self.messages: Dict[str, List[ChatMessage]] = {}
        self.error: Optional[Exception] = None
        self.calls: List[str] = []

    async def list_conversations(self) -> List[Conversation]:
        self.calls.append("list_conversations")
        if self.error is not None:
            raise self.error
        return list(self.conversations)

    async def list_messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> List[ChatMessage]:
        self.calls.append(f"list_messages:{conversation_id}")
        if self.error is not None:
            raise self.error
        return list(self.messages.get(conversation_id, []))


def make_jwt(expires_in: int = 3600, **claims: Any) -> str:
    payload = {"sub": "user-1", "exp": int(time.time()) + expires_in}
    payload.update(claims)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def make_message(
    conversation_id: str = "c1",
    message_id: Optional[str] = None,
    *,
    sender_id: str = "user-2",
    content: Any = "hello",
    **kwargs: Any,
) -> ChatMessage:
    index = next(_ids)
    defaults = {
        "id": message_id or f"m{index}",
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "content": content,
        "created_at": _BASE_TIME + timedelta(seconds=index),
    }
    defaults.update(kwargs)
    return ChatMessage(**defaults)


def make_conversation(conversation_id: str = "c1", **kwargs: Any) -> Conversation:
    defaults = {
        "id": conversation_id,
        "is_group": False,
        "title": None,
        "created_by": "user-1",
        "created_at": _BASE_TIME,
        "participants": [
            {"user_id": "user-1", "first_name": "Ada", "last_name": "Lovelace"},
            {"user_id": "user-2", "first_name": "Alan", "last_name": "Turing"},
        ],
    }
    defaults.update(kwargs)
    return Conversation.model_validate(defaults)


def message_payload(conversation_id: str = "c1", message_id: str = "m1", **kwargs: Any) -> Dict[str, Any]:
    message = make_message(conversation_id, message_id, **kwargs)
    return {
        "conversationId": conversation_id,
        "message": message.model_dump(mode="json"),
        "senderInfo": {"id": message.sender_id, "email": "alan@example.com"},
    }


def notification_payload(notification_id: str = "n1", **kwargs: Any) -> Dict[str, Any]:
    payload = {
        "notification_id": notification_id,
        "type": "mention",
        "title": "You were mentioned",
        "message": "Alan mentioned you in a post",
        "timestamp": _BASE_TIME.isoformat(),
        "is_read": False,
    }
    payload.update(kwargs)
    return payload
