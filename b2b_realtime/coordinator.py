"""Top-level owner of the realtime session.

One ``RealtimeCoordinator`` per user session holds the connection, the chat
store, the notification inbox and the progress tracker. Consumers never touch
the connection directly: they get a :class:`RealtimeHandle`, and closing a
handle only removes that consumer's subscriptions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from b2b_realtime.conversations.schemas import ChatMessage
from b2b_realtime.conversations.service import ChatSocketService
from b2b_realtime.conversations.store import ChatStore
from b2b_realtime.conversations.sync import ChatSynchronizer
from b2b_realtime.core.config import Settings
from b2b_realtime.core.exceptions import RealtimeError
from b2b_realtime.core.security import TokenStore
from b2b_realtime.notifications.inbox import NotificationInbox
from b2b_realtime.notifications.schemas import NotificationCounts, NotificationEvent
from b2b_realtime.progress.tracker import RESUME_STATUS_EVENT, ProgressTracker, simulate_progress
from b2b_realtime.realtime.backoff import ReconnectionPolicy
from b2b_realtime.realtime.connection import ConnectionManager, ConnectionStatus
from b2b_realtime.realtime.observers import Unsubscribe
from b2b_realtime.realtime.transport import SocketIOTransport
from b2b_realtime.services.rest_api import MarketplaceApi

log = logging.getLogger("realtime")


class RealtimeHandle:
    """Subscription handle given to one consumer."""

    def __init__(self, coordinator: "RealtimeCoordinator") -> None:
        self._coordinator = coordinator
        self._unsubscribers: List[Unsubscribe] = []
        self.closed = False

    def on_notification(self, handler: Callable[[NotificationEvent], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.connection.on_notification(handler))

    def on_connection_change(self, handler: Callable[[bool], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.connection.on_connection_change(handler))

    def on_error(self, handler: Callable[[Exception], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.connection.on_error(handler))

    def on_status_change(self, handler: Callable[[ConnectionStatus], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.connection.on_status_change(handler))

    def on_fallback(self, handler: Callable[[Exception], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.connection.on_fallback(handler))

    def on_chat_change(self, handler: Callable[[str, Optional[str]], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.synchronizer.on_change(handler))

    def on_progress(self, handler: Callable[[Any], Any]) -> Unsubscribe:
        return self._keep(self._coordinator.progress.on_update(handler))

    def close(self) -> None:
        """Drop this consumer's handlers. The shared connection stays open."""

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.closed = True

    def _keep(self, unsubscribe: Unsubscribe) -> Unsubscribe:
        if self.closed:
            unsubscribe()
            raise RealtimeError("Handle is closed")
        self._unsubscribers.append(unsubscribe)
        return unsubscribe

    def __len__(self) -> int:
        return len(self._unsubscribers)


class RealtimeCoordinator:
    def __init__(
        self,
        connection: ConnectionManager,
        *,
        api: Optional[MarketplaceApi] = None,
        store: Optional[ChatStore] = None,
        inbox: Optional[NotificationInbox] = None,
        progress: Optional[ProgressTracker] = None,
        simulate_on_fallback: bool = True,
        simulation_interval: float = 0.8,
    ) -> None:
        self.connection = connection
        self.api = api
        self.store = store or ChatStore()
        self.inbox = inbox or NotificationInbox()
        self.progress = progress or ProgressTracker()
        self.chat = ChatSocketService(connection)
        self.synchronizer = ChatSynchronizer(self.chat, self.store, api)
        self.simulate_on_fallback = simulate_on_fallback
        self.simulation_interval = simulation_interval
        self.started = False
        self._internal: List[Unsubscribe] = []
        self._simulation: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings, token_store: TokenStore) -> "RealtimeCoordinator":
        transport = SocketIOTransport(
            settings.realtime_url,
            socketio_path=settings.REALTIME_SOCKETIO_PATH,
            transports=settings.REALTIME_TRANSPORTS,
            connect_timeout=settings.CONNECT_TIMEOUT_SECONDS,
        )
        connection = ConnectionManager(
            transport,
            token_store,
            policy=ReconnectionPolicy(
                base_delay_ms=settings.RECONNECT_BASE_DELAY_MS,
                max_attempts=settings.RECONNECT_MAX_ATTEMPTS,
            ),
            heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS or None,
            history_limit=settings.NOTIFICATION_HISTORY_ON_CONNECT,
            fallback_enabled=settings.FALLBACK_TO_SIMULATED_PROGRESS,
            token_leeway_seconds=settings.TOKEN_EXPIRY_LEEWAY_SECONDS,
        )
        api = MarketplaceApi(settings.API_BASE_URL, token_store, timeout=settings.API_REQUEST_TIMEOUT_SECONDS)
        return cls(connection, api=api, simulate_on_fallback=settings.FALLBACK_TO_SIMULATED_PROGRESS)

    # -------------------------------------------------------------- lifecycle

    async def start(self) -> ConnectionStatus:
        if not self.started:
            self._internal = [
                self.connection.on_notification(self._on_notification),
                self.connection.on_connection_change(self._on_connection_change),
                self.connection.on_fallback(self._on_fallback),
                self.connection.on_event(RESUME_STATUS_EVENT, self.progress.apply),
            ]
            self.synchronizer.attach()
            self.started = True
            log.info("[RT COORDINATOR] started")
        return await self.connection.connect()

    async def stop(self, close_connection: bool = False) -> None:
        for unsubscribe in self._internal:
            unsubscribe()
        self._internal = []
        self.synchronizer.detach()
        self._cancel_simulation()
        self.started = False
        if close_connection:
            await self.connection.close()
        log.info("[RT COORDINATOR] stopped close_connection=%s", close_connection)

    def handle(self) -> RealtimeHandle:
        return RealtimeHandle(self)

    # ----------------------------------------------------------- user intents

    async def open_conversation(self, conversation_id: str, load_history: bool = True) -> None:
        self.store.open_conversation(conversation_id)
        if self.connection.connected:
            try:
                await self.chat.join_conversation(conversation_id)
            except RealtimeError as exc:
                log.warning("[CHAT JOIN FAILED] conversation=%s: %s", conversation_id, exc)
                await self.connection.report_error(exc)
        if load_history and self.api is not None:
            try:
                await self.synchronizer.load_history(conversation_id)
            except RealtimeError as exc:
                log.warning("[CHAT HISTORY FAILED] conversation=%s: %s", conversation_id, exc)
                await self.connection.report_error(exc)
        # messages fetched while opening are already seen
        self.store.open_conversation(conversation_id)

    def close_conversation(self) -> None:
        self.store.close_conversation()

    async def send_message(self, conversation_id: str, content: Any, is_forwarded: bool = False) -> ChatMessage:
        """Optimistically append the message, then reconcile with the server ack.

        On failure the local entry is flagged ``failed`` and the error goes to
        ``on_error``; the returned message is the failed local copy.
        """

        pending = self.store.add_pending_message(conversation_id, content, is_forwarded=is_forwarded)
        client_id = pending.client_message_id
        try:
            confirmed = await self.chat.send_message(
                conversation_id,
                content,
                is_forwarded=is_forwarded,
                client_message_id=client_id,
            )
        except (RealtimeError, ValueError) as exc:
            self.store.fail_pending(client_id)
            await self.connection.report_error(exc)
            await self.synchronizer.notify_change("message_failed", conversation_id)
            return self.store.get_message(conversation_id, client_id) or pending

        self.store.confirm_pending(client_id, confirmed)
        await self.synchronizer.notify_change("new_message", conversation_id)
        return confirmed

    async def mark_notification_read(self, notification_id: str) -> bool:
        """Mark read locally and tell the server. Returns False for an unknown id."""

        if self.inbox.get(notification_id) is None:
            return False
        self.inbox.mark_read(notification_id)
        if not await self.connection.mark_as_read(notification_id):
            log.info("[NOTIF READ] offline, server not told id=%s", notification_id)
        return True

    async def request_history(self, limit: int = 20) -> bool:
        return await self.connection.request_history(limit)

    async def reconnect(self) -> ConnectionStatus:
        return await self.connection.reconnect()

    async def notification_counts(self) -> NotificationCounts:
        if self.api is None:
            unread = self.inbox.unread_count
            return NotificationCounts(unread_count=unread, total_count=len(self.inbox))
        return await self.api.get_notification_counts()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "connection": {
                "status": self.connection.status.value,
                "retry_count": self.connection.retry_count,
                "retry_delay_ms": self.connection.retry_delay_ms,
                "exhausted": self.connection.exhausted,
                "fallback_active": self.connection.fallback_active,
            },
            "notifications": {
                "unread_count": self.inbox.unread_count,
                "items": [item.model_dump(mode="json") for item in self.inbox.items],
            },
            "chat": self.store.snapshot(),
            "progress": self.progress.state.model_dump(mode="json"),
        }

    # -------------------------------------------------------------- internals

    def _on_notification(self, notification: NotificationEvent) -> None:
        self.inbox.add(notification)

    async def _on_connection_change(self, connected: bool) -> None:
        if not connected:
            return
        self._cancel_simulation()
        if self.api is None:
            return
        try:
            await self.synchronizer.refresh_conversations()
        except RealtimeError as exc:
            log.warning("[CHAT SYNC] initial refresh failed: %s", exc)
            await self.connection.report_error(exc)

    def _on_fallback(self, error: Exception) -> None:
        if not self.simulate_on_fallback or self.progress.state.finished:
            return
        if self._simulation is not None and not self._simulation.done():
            return
        log.info("[RT FALLBACK] switching progress to simulated data: %s", error)
        self._simulation = asyncio.get_running_loop().create_task(
            simulate_progress(self.progress, self.simulation_interval)
        )

    def _cancel_simulation(self) -> None:
        if self._simulation is not None and not self._simulation.done():
            self._simulation.cancel()
        self._simulation = None


__all__ = ["RealtimeCoordinator", "RealtimeHandle"]
