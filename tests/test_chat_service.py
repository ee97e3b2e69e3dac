import pytest

from b2b_realtime.conversations.service import ChatSocketService
from b2b_realtime.core.exceptions import CommandRejectedError, NotConnectedError, RealtimeError
from tests.utils import make_conversation, make_message, message_payload


@pytest.fixture()
def service(manager) -> ChatSocketService:
    return ChatSocketService(manager)


@pytest.mark.asyncio
async def test_commands_require_a_connection(service):
    with pytest.raises(NotConnectedError):
        await service.send_message("c1", "hello")
    assert await service.send_typing("c1", True) is False


@pytest.mark.asyncio
async def test_send_message_returns_the_server_copy(service, manager, transport):
    await manager.connect()
    server_message = make_message("c1", "m-42", sender_id="user-1", content="hello")
    transport.ack_responses["chat:send_message"] = {
        "success": True,
        "message": server_message.model_dump(mode="json"),
    }

    message = await service.send_message("c1", "hello", client_message_id="local-1")

    assert message.id == "m-42"
    assert message.client_message_id == "local-1"
    assert transport.calls == [
        (
            "chat:send_message",
            {"conversationId": "c1", "content": "hello", "isForwarded": False, "clientMessageId": "local-1"},
        )
    ]


@pytest.mark.asyncio
async def test_rejected_ack_raises_with_server_error(service, manager, transport):
    await manager.connect()
    transport.ack_responses["chat:update_message"] = {"success": False, "error": "Message ID and content are required"}

    with pytest.raises(CommandRejectedError) as exc:
        await service.update_message("m1", "")

    assert exc.value.event == "chat:update_message"
    assert exc.value.error == "Message ID and content are required"


@pytest.mark.asyncio
async def test_missing_ack_is_a_rejection(service, manager, transport):
    await manager.connect()
    with pytest.raises(CommandRejectedError) as exc:
        await service.leave_conversation("c1")
    assert exc.value.error == "unknown_error"


@pytest.mark.asyncio
async def test_ack_without_payload_is_an_error(service, manager, transport):
    await manager.connect()
    transport.ack_responses["chat:join_conversation"] = {"success": True}
    with pytest.raises(RealtimeError):
        await service.join_conversation("c1")


@pytest.mark.asyncio
async def test_start_conversation(service, manager, transport):
    await manager.connect()
    conversation = make_conversation("c9")
    first = make_message("c9", "m1", sender_id="user-1")
    transport.ack_responses["chat:start_conversation"] = {
        "success": True,
        "conversation": conversation.model_dump(mode="json"),
        "message": first.model_dump(mode="json"),
        "isNew": True,
    }

    result = await service.start_conversation("user-2", initial_message="hi")

    assert result.conversation.id == "c9"
    assert result.message.id == "m1"
    assert result.is_new is True
    assert transport.calls[0][1] == {"recipientId": "user-2", "initialMessage": "hi"}


@pytest.mark.asyncio
async def test_delete_and_typing(service, manager, transport):
    await manager.connect()
    transport.ack_responses["chat:delete_message"] = {"success": True, "messageId": "m1"}

    assert await service.delete_message("m1") == "m1"
    assert await service.send_typing("c1", True) is True
    assert ("chat:typing", {"conversationId": "c1", "isTyping": True}) in transport.emitted


@pytest.mark.asyncio
async def test_typed_subscriptions_drop_malformed_payloads(service, manager, transport):
    received = []
    unsubscribe = service.on_new_message(received.append)
    await manager.connect()

    await transport.fire("chat:new_message", {"conversationId": "c1"})
    await transport.fire("chat:new_message", message_payload("c1", "m1"))
    unsubscribe()
    await transport.fire("chat:new_message", message_payload("c1", "m2"))

    assert [event.message.id for event in received] == ["m1"]
    assert received[0].conversation_id == "c1"


@pytest.mark.asyncio
async def test_typing_event_is_parsed(service, manager, transport):
    received = []
    service.on_user_typing(received.append)
    await manager.connect()

    await transport.fire("chat:user_typing", {"conversationId": "c1", "userId": "user-2", "isTyping": True})

    assert received[0].user_id == "user-2"
    assert received[0].is_typing is True
