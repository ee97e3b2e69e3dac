from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from b2b_realtime.coordinator import RealtimeCoordinator

router = APIRouter()


def get_coordinator(request: Request) -> RealtimeCoordinator:
    coordinator = getattr(request.app.state, "realtime", None)
    if coordinator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="realtime_not_configured")
    return coordinator


@router.get("/state")
async def realtime_state(coordinator: RealtimeCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    return coordinator.snapshot()


@router.get("/notifications")
async def list_notifications(
    unread_only: bool = Query(default=False),
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    items = coordinator.inbox.items
    if unread_only:
        items = [item for item in items if not item.is_read]
    return {
        "unread_count": coordinator.inbox.unread_count,
        "items": [item.model_dump(mode="json") for item in items],
    }


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    if not await coordinator.mark_notification_read(notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="notification_not_found")
    return {"id": notification_id, "is_read": True, "unread_count": coordinator.inbox.unread_count}


@router.get("/conversations/{conversation_id}/messages")
async def conversation_messages(
    conversation_id: str,
    include_deleted: bool = Query(default=False),
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    store = coordinator.store
    if store.get_conversation(conversation_id) is None and not store.messages(conversation_id, include_deleted=True):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="conversation_not_found")
    return {
        "conversation_id": conversation_id,
        "unread_count": store.unread_count(conversation_id),
        "typing_users": store.typing_users(conversation_id),
        "messages": [
            message.model_dump(mode="json")
            for message in store.messages(conversation_id, include_deleted=include_deleted)
        ],
    }


@router.post("/conversations/{conversation_id}/open")
async def open_conversation(
    conversation_id: str,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    if coordinator.store.get_conversation(conversation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="conversation_not_found")
    await coordinator.open_conversation(conversation_id)
    return {"active_conversation_id": conversation_id, "total_unread": coordinator.store.total_unread()}


@router.post("/reconnect")
async def reconnect(coordinator: RealtimeCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    """Manual reconnect: skips the backoff and resets the retry counters."""

    result = await coordinator.reconnect()
    if result.value != "connected":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"realtime_{result.value}")
    return {"status": result.value}


@router.post("/notifications/history")
async def request_notification_history(
    limit: int = Query(default=20, ge=1, le=100),
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    if not await coordinator.request_history(limit):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="realtime_not_connected")
    return {"requested": limit}
