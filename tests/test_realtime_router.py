from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from b2b_realtime.api.realtime_router import (
    conversation_messages,
    get_coordinator,
    list_notifications,
    mark_notification_read,
    open_conversation,
    realtime_state,
    request_notification_history,
    reconnect,
)
from b2b_realtime.coordinator import RealtimeCoordinator
from tests.utils import FakeApi, make_conversation, message_payload, notification_payload


@pytest.fixture()
def coordinator(manager) -> RealtimeCoordinator:
    return RealtimeCoordinator(manager, api=FakeApi([make_conversation("c1")]))


def test_missing_coordinator_is_a_503():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
    with pytest.raises(HTTPException) as exc:
        get_coordinator(request)
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_state_and_notifications(coordinator, transport):
    await coordinator.start()
    await transport.fire("notification", notification_payload("n1"))
    await transport.fire("notification", notification_payload("n2"))

    state = await realtime_state(coordinator=coordinator)
    assert state["connection"]["status"] == "connected"

    result = await mark_notification_read("n1", coordinator=coordinator)
    assert result == {"id": "n1", "is_read": True, "unread_count": 1}

    unread = await list_notifications(unread_only=True, coordinator=coordinator)
    assert [item["id"] for item in unread["items"]] == ["n2"]


@pytest.mark.asyncio
async def test_unknown_notification_is_a_404(coordinator):
    with pytest.raises(HTTPException) as exc:
        await mark_notification_read("nope", coordinator=coordinator)
    assert exc.value.status_code == 404
    assert exc.value.detail == "notification_not_found"


@pytest.mark.asyncio
async def test_conversation_messages_and_open(coordinator, transport):
    await coordinator.start()
    await transport.fire("chat:new_message", message_payload("c1", "m1"))
    transport.ack_responses["chat:join_conversation"] = {
        "success": True,
        "conversationDetails": make_conversation("c1").model_dump(mode="json"),
    }

    before = await conversation_messages("c1", include_deleted=False, coordinator=coordinator)
    assert before["unread_count"] == 1
    assert [message["id"] for message in before["messages"]] == ["m1"]

    opened = await open_conversation("c1", coordinator=coordinator)
    assert opened == {"active_conversation_id": "c1", "total_unread": 0}

    with pytest.raises(HTTPException) as exc:
        await conversation_messages("c404", include_deleted=False, coordinator=coordinator)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_reconnect_endpoint(coordinator, transport):
    result = await reconnect(coordinator=coordinator)
    assert result == {"status": "connected"}

    await coordinator.connection.disconnect()
    transport.fail_times = 1
    with pytest.raises(HTTPException) as exc:
        await reconnect(coordinator=coordinator)
    assert exc.value.status_code == 503
    await coordinator.connection.disconnect()


@pytest.mark.asyncio
async def test_history_request_needs_a_live_connection(coordinator, transport):
    with pytest.raises(HTTPException) as exc:
        await request_notification_history(limit=5, coordinator=coordinator)
    assert exc.value.status_code == 503

    await coordinator.start()
    transport.emitted.clear()
    assert await request_notification_history(limit=5, coordinator=coordinator) == {"requested": 5}
    assert transport.emitted == [("message", {"type": "get_history", "limit": 5})]
