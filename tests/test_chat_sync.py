import pytest

from b2b_realtime.conversations.service import ChatSocketService
from b2b_realtime.conversations.store import ChatStore
from b2b_realtime.conversations.sync import ChatSynchronizer
from b2b_realtime.core.exceptions import RealtimeError
from tests.utils import FakeApi, make_conversation, make_message, message_payload


@pytest.fixture()
def api() -> FakeApi:
    return FakeApi([make_conversation("c1")])


@pytest.fixture()
def store() -> ChatStore:
    return ChatStore(current_user_id="user-1")


@pytest.fixture()
def synchronizer(manager, store, api) -> ChatSynchronizer:
    sync = ChatSynchronizer(ChatSocketService(manager), store, api)
    sync.attach()
    return sync


def new_conversation_payload(conversation_id="c2", message_id="m1"):
    return {
        "conversation": {"id": conversation_id, "is_group": False, "created_by": "user-2"},
        "message": make_message(conversation_id, message_id).model_dump(mode="json"),
    }


@pytest.mark.asyncio
async def test_new_conversation_refreshes_before_applying_the_message(synchronizer, store, api, transport):
    refreshed = make_conversation("c2", participants=[{"user_id": "user-2", "first_name": "Alan"}])
    api.conversations = [refreshed, make_conversation("c1")]
    order = []
    synchronizer.on_change(lambda event, conversation_id: order.append(event))

    await transport.fire("chat:new_conversation", new_conversation_payload("c2", "m1"))

    assert api.calls == ["list_conversations"]
    assert order == ["conversations", "new_conversation"]
    assert store.get_conversation("c2").participants[0].first_name == "Alan"
    assert store.get_conversation("c2").last_message.id == "m1"
    assert [message.id for message in store.messages("c2")] == ["m1"]
    assert store.unread_count("c2") == 1


@pytest.mark.asyncio
async def test_failed_refresh_falls_back_to_pushed_conversation(synchronizer, store, api, transport):
    api.error = RealtimeError("GET /chat/conversations failed")

    await transport.fire("chat:new_conversation", new_conversation_payload("c2", "m1"))

    assert store.get_conversation("c2") is not None
    assert [message.id for message in store.messages("c2")] == ["m1"]


@pytest.mark.asyncio
async def test_refresh_missing_the_new_conversation_still_inserts_it(synchronizer, store, api, transport):
    await transport.fire("chat:new_conversation", new_conversation_payload("c2", "m1"))
    assert {conversation.id for conversation in store.conversations} == {"c1", "c2"}


@pytest.mark.asyncio
async def test_message_events_flow_into_the_store(synchronizer, store, transport):
    await transport.fire("chat:new_message", message_payload("c1", "m1", content="first"))
    await transport.fire("chat:new_message", message_payload("c1", "m1", content="first"))
    await transport.fire(
        "chat:message_updated",
        {"conversationId": "c1", "message": make_message("c1", "m1", content="edited").model_dump(mode="json")},
    )
    await transport.fire("chat:user_typing", {"conversationId": "c1", "userId": "user-2", "isTyping": True})

    messages = store.messages("c1")
    assert len(messages) == 1
    assert messages[0].content == "edited"
    assert store.typing_users("c1") == ["user-2"]

    await transport.fire("chat:message_deleted", {"conversationId": "c1", "messageId": "m1"})
    await transport.fire(
        "chat:message_updated",
        {"conversationId": "c1", "message": make_message("c1", "m1", content="again").model_dump(mode="json")},
    )

    assert store.messages("c1") == []


@pytest.mark.asyncio
async def test_update_before_new_message_is_dropped(synchronizer, store, transport):
    await transport.fire(
        "chat:message_updated",
        {"conversationId": "c1", "message": make_message("c1", "m1", content="x").model_dump(mode="json")},
    )
    assert store.messages("c1", include_deleted=True) == []


@pytest.mark.asyncio
async def test_malformed_event_leaves_store_untouched(synchronizer, store, transport):
    await transport.fire("chat:message_deleted", {"conversationId": "c1"})
    await transport.fire("chat:new_message", None)
    await transport.fire("chat:new_message", message_payload("c1", "m2"))

    assert [message.id for message in store.messages("c1")] == ["m2"]


@pytest.mark.asyncio
async def test_detach_stops_updates_but_keeps_connection(synchronizer, store, manager, transport):
    await manager.connect()
    synchronizer.detach()

    await transport.fire("chat:new_message", message_payload("c1", "m1"))

    assert store.messages("c1") == []
    assert manager.connected is True


@pytest.mark.asyncio
async def test_load_history_uses_rest_client(synchronizer, store, api):
    api.messages["c1"] = [make_message("c1", "old-1"), make_message("c1", "old-2")]

    assert await synchronizer.load_history("c1") == 2
    assert [message.id for message in store.messages("c1")] == ["old-1", "old-2"]
    assert store.unread_count("c1") == 0
