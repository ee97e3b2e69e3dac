"""Supervisor for the single authenticated realtime connection.

State machine::

    disconnected -> connecting -> {connected, error}
    connected -> disconnected          (server or network drop, retried)
    error                              (terminal only once retries are exhausted)

The manager owns the reconnect timer and the heartbeat; both are cancelled on
a manual ``disconnect()`` or ``close()``. Subscribers only ever receive
callbacks and never own the connection.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from b2b_realtime.core.exceptions import (
    NotConnectedError,
    RealtimeError,
    RetryExhaustedError,
    TokenExpiredError,
    TokenUnavailableError,
)
from b2b_realtime.core.security import TokenStore, require_access_token
from b2b_realtime.notifications.normalize import (
    from_connection_payload,
    from_interaction_payload,
    parse_notification,
)
from b2b_realtime.notifications.schemas import NotificationEvent

from .backoff import ReconnectionPolicy
from .observers import Multicast, Unsubscribe
from .transport import TRANSIENT_ERRORS

log = logging.getLogger("realtime")

NotificationHandler = Callable[[NotificationEvent], Any]
ConnectionHandler = Callable[[bool], Any]
ErrorHandler = Callable[[Exception], Any]
Sleep = Callable[[float], Awaitable[None]]

_NOTIFICATION_EVENTS = {
    "notification": parse_notification,
    "connection:notification": from_connection_payload,
    "interaction:notification": from_interaction_payload,
}

# Refusal reasons sent by the server's connect handler that mean the token is
# the problem, not the network.
_AUTH_REFUSALS = {
    "jwt_expired": TokenExpiredError,
    "unauthorized": TokenUnavailableError,
}


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ConnectionManager:
    """Establish and supervise exactly one authenticated realtime connection."""

    def __init__(
        self,
        transport: Any,
        token_store: TokenStore,
        *,
        policy: Optional[ReconnectionPolicy] = None,
        heartbeat_interval: Optional[float] = None,
        history_limit: int = 10,
        fallback_enabled: bool = True,
        token_leeway_seconds: int = 0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._token_store = token_store
        self.policy = policy or ReconnectionPolicy()
        self._heartbeat_interval = heartbeat_interval
        self._history_limit = history_limit
        self._fallback_enabled = fallback_enabled
        self._token_leeway_seconds = token_leeway_seconds
        self._sleep = sleep

        self._status = ConnectionStatus.DISCONNECTED
        self._manual_close = False
        # bumped by disconnect() so a handshake that outlives it is discarded
        self._epoch = 0
        self._exhausted = False
        self._last_refusal: Optional[str] = None
        self.fallback_active = False

        self._reconnect_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

        self._notification_handlers: Multicast[NotificationHandler] = Multicast("notification")
        self._connection_handlers: Multicast[ConnectionHandler] = Multicast("connection")
        self._error_handlers: Multicast[ErrorHandler] = Multicast("error")
        self._status_handlers: Multicast[Callable[[ConnectionStatus], Any]] = Multicast("status")
        self._fallback_handlers: Multicast[ErrorHandler] = Multicast("fallback")
        self._event_channels: Dict[str, Multicast] = {}

        self._register_transport_handlers()

    # ------------------------------------------------------------------ state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def retry_count(self) -> int:
        return self.policy.attempts

    @property
    def retry_delay_ms(self) -> int:
        return self.policy.current_delay_ms

    # -------------------------------------------------------------- lifecycle

    async def connect(self) -> ConnectionStatus:
        """Open the connection unless it is already open or opening."""

        if self._status in (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING):
            return self._status

        self._manual_close = False
        await self._open()
        return self._status

    async def disconnect(self) -> None:
        """Tear the transport down on purpose. Idempotent."""

        was_connected = self._status == ConnectionStatus.CONNECTED
        self._manual_close = True
        self._epoch += 1
        await self._stop_reconnect()
        self._stop_heartbeat()
        self.policy.reset()
        self._exhausted = False

        try:
            await self._transport.disconnect()
        except TRANSIENT_ERRORS as exc:
            log.warning("[RT DISCONNECT] transport error while closing: %s", exc)

        await self._set_status(ConnectionStatus.DISCONNECTED)
        if was_connected:
            log.info("[RT DISCONNECT] closed by client")
            await self._connection_handlers.emit(False)

    async def reconnect(self) -> ConnectionStatus:
        """Manual reconnect: skip the backoff and forgive previous failures."""

        await self._stop_reconnect()
        self.policy.reset()
        self._exhausted = False
        self.fallback_active = False
        self._manual_close = False
        log.info("[RT RECONNECT] manual reconnect requested")
        return await self.connect()

    async def close(self) -> None:
        """Teardown: disconnect and drop every subscriber."""

        await self.disconnect()
        for channel in (
            self._notification_handlers,
            self._connection_handlers,
            self._error_handlers,
            self._status_handlers,
            self._fallback_handlers,
            *self._event_channels.values(),
        ):
            channel.clear()

    async def wait_until_settled(self) -> None:
        """Wait for any scheduled reconnect chain to finish."""

        while True:
            task = self._reconnect_task
            if task is None or task.done() or task is asyncio.current_task():
                return
            await asyncio.wait({task})

    # ---------------------------------------------------------- subscriptions

    def on_notification(self, handler: NotificationHandler) -> Unsubscribe:
        return self._notification_handlers.subscribe(handler)

    def on_connection_change(self, handler: ConnectionHandler) -> Unsubscribe:
        return self._connection_handlers.subscribe(handler)

    def on_error(self, handler: ErrorHandler) -> Unsubscribe:
        return self._error_handlers.subscribe(handler)

    def on_status_change(self, handler: Callable[[ConnectionStatus], Any]) -> Unsubscribe:
        return self._status_handlers.subscribe(handler)

    def on_fallback(self, handler: ErrorHandler) -> Unsubscribe:
        """Called once when retries are exhausted and fallback is enabled."""

        return self._fallback_handlers.subscribe(handler)

    def on_event(self, event: str, handler: Callable[[Any], Any]) -> Unsubscribe:
        """Subscribe to a raw server event (``chat:new_message``, ``resume:status``...)."""

        channel = self._event_channels.get(event)
        if channel is None:
            channel = Multicast(event)
            self._event_channels[event] = channel
            self._transport.on(event, self._relay(channel))
        return channel.subscribe(handler)

    async def report_error(self, error: Exception) -> None:
        """Publish an error raised outside the manager on the shared error channel."""

        await self._error_handlers.emit(error)

    # --------------------------------------------------------------- commands

    async def send(self, data: Mapping[str, Any]) -> bool:
        """Send an application message; returns False when not connected."""

        if not self.connected:
            log.warning("[RT SEND] socket not connected, dropping type=%s", data.get("type"))
            return False
        await self._transport.emit("message", dict(data))
        return True

    async def mark_as_read(self, notification_id: str) -> bool:
        return await self.send({"type": "mark_read", "notification_id": notification_id})

    async def request_history(self, limit: int = 20) -> bool:
        return await self.send({"type": "get_history", "limit": limit})

    async def emit(self, event: str, data: Any) -> None:
        if not self.connected:
            raise NotConnectedError(f"Socket not connected, cannot emit {event}")
        await self._transport.emit(event, data)

    async def call(self, event: str, data: Any, timeout: Optional[float] = None) -> Any:
        """Emit ``event`` and return the server acknowledgement."""

        if not self.connected:
            raise NotConnectedError(f"Socket not connected, cannot call {event}")
        try:
            return await self._transport.call(event, data, timeout=timeout)
        except TRANSIENT_ERRORS as exc:
            raise RealtimeError(f"{event} failed: {exc}") from exc

    # -------------------------------------------------------------- internals

    async def _open(self) -> None:
        self._cancel_reconnect()

        try:
            token = require_access_token(self._token_store, self._token_leeway_seconds)
        except TokenUnavailableError as exc:
            log.error("[RT CONNECT REFUSED] %s", exc)
            await self._fail_precondition(exc)
            return

        await self._set_status(ConnectionStatus.CONNECTING)
        self._last_refusal = None
        epoch = self._epoch
        try:
            await self._transport.connect(token)
        except asyncio.CancelledError:
            # a manual reconnect or disconnect abandoned this handshake
            if self._status == ConnectionStatus.CONNECTING:
                await self._set_status(ConnectionStatus.DISCONNECTED)
            raise
        except TRANSIENT_ERRORS as exc:
            if self._manual_close or epoch != self._epoch:
                log.info("[RT CONNECT] handshake failed after manual disconnect: %s", exc)
                return
            refusal = _AUTH_REFUSALS.get(self._last_refusal or "")
            if refusal is not None:
                log.error("[RT CONNECT REFUSED] server reason=%s", self._last_refusal)
                await self._fail_precondition(refusal(self._last_refusal))
                return
            log.warning(
                "[RT CONNECT FAILED] attempt=%s error=%s",
                self.policy.attempts,
                exc,
            )
            await self._set_status(ConnectionStatus.ERROR)
            await self._error_handlers.emit(exc)
            await self._schedule_reconnect()
            return

        if epoch != self._epoch:
            # disconnect() ran while the handshake was in flight
            if self._manual_close:
                await self._transport.disconnect()
            return

        await self._handle_open()

    async def _handle_open(self) -> None:
        self.policy.reset()
        self._exhausted = False
        self.fallback_active = False
        await self._set_status(ConnectionStatus.CONNECTED)
        log.info("[RT CONNECT] connected sid=%s", getattr(self._transport, "sid", None))
        await self._connection_handlers.emit(True)
        self._start_heartbeat()
        if self._history_limit:
            await self.request_history(self._history_limit)

    async def _handle_close(self, reason: Any = None) -> None:
        if self._manual_close or self._status != ConnectionStatus.CONNECTED:
            return

        self._stop_heartbeat()
        log.warning("[RT DISCONNECT] unexpected drop reason=%s", reason)
        await self._set_status(ConnectionStatus.DISCONNECTED)
        await self._connection_handlers.emit(False)
        await self._schedule_reconnect()

    async def _fail_precondition(self, error: TokenUnavailableError) -> None:
        self._cancel_reconnect()
        await self._set_status(ConnectionStatus.ERROR)
        await self._error_handlers.emit(error)

    async def _schedule_reconnect(self) -> None:
        if self._manual_close:
            return

        delay_ms = self.policy.next_delay_ms()
        if delay_ms is None:
            await self._give_up()
            return

        log.info(
            "[RT RECONNECT] attempt=%s/%s delay_ms=%s",
            self.policy.attempts,
            self.policy.max_attempts,
            delay_ms,
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_after(delay_ms))

    async def _reconnect_after(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)
        if self._manual_close:
            return
        await self._open()

    async def _give_up(self) -> None:
        self._exhausted = True
        error = RetryExhaustedError(self.policy.attempts)
        log.error("[RT RECONNECT] %s", error)
        await self._set_status(ConnectionStatus.ERROR)
        await self._error_handlers.emit(error)
        if self._fallback_enabled and not self.fallback_active:
            self.fallback_active = True
            await self._fallback_handlers.emit(error)

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if task is not asyncio.current_task():
            self._reconnect_task = None

    async def _stop_reconnect(self) -> None:
        """Cancel a pending reconnect and wait until it has unwound."""

        task = self._reconnect_task
        self._cancel_reconnect()
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait({task})

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        if not self._heartbeat_interval:
            return
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        while self.connected:
            await asyncio.sleep(self._heartbeat_interval)
            if self.connected:
                await self.send({"type": "ping"})

    async def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        log.debug("[RT STATUS] %s -> %s", self._status.value, status.value)
        self._status = status
        await self._status_handlers.emit(status)

    def _register_transport_handlers(self) -> None:
        self._transport.on("disconnect", self._on_transport_disconnect)
        self._transport.on("connect_error", self._on_connect_error)
        self._transport.on("message", self._handle_envelope)
        for event, normalizer in _NOTIFICATION_EVENTS.items():
            self._transport.on(event, self._notification_relay(event, normalizer))

    async def _on_transport_disconnect(self, *args: Any) -> None:
        await self._handle_close(args[0] if args else None)

    async def _on_connect_error(self, data: Any = None) -> None:
        message = data.get("message") if isinstance(data, dict) else data
        self._last_refusal = str(message) if message else None
        log.warning("[RT CONNECT ERROR] %s", message)

    def _notification_relay(self, event: str, normalizer: Callable[[Any], NotificationEvent]):
        async def relay(payload: Any = None) -> None:
            await self._dispatch_notification(event, normalizer, payload)

        return relay

    def _relay(self, channel: Multicast):
        async def relay(*args: Any) -> None:
            await channel.emit(args[0] if args else None)

        return relay

    async def _dispatch_notification(
        self,
        event: str,
        normalizer: Callable[[Any], NotificationEvent],
        payload: Any,
    ) -> None:
        try:
            notification = normalizer(payload)
        except ValueError as exc:
            log.warning("[RT DROP] event=%s malformed payload: %s", event, exc)
            return
        await self._notification_handlers.emit(notification)

    async def _handle_envelope(self, data: Any = None) -> None:
        """Handle the generic ``message`` event carrying a ``type`` field."""

        if not isinstance(data, dict):
            log.warning("[RT DROP] event=message malformed payload: %r", data)
            return

        kind = data.get("type")
        if kind == "notification":
            await self._dispatch_notification("notification", parse_notification, data.get("payload"))
        elif kind in ("connection:notification", "interaction:notification"):
            normalizer = _NOTIFICATION_EVENTS[kind]
            await self._dispatch_notification(kind, normalizer, data.get("payload") or data)
        elif kind == "history":
            notifications = data.get("notifications")
            if not isinstance(notifications, list):
                log.warning("[RT DROP] history without a notifications list")
                return
            for item in notifications:
                await self._dispatch_notification("history", parse_notification, item)
        elif kind == "pong":
            log.debug("[RT HEARTBEAT] pong")
        elif kind == "error":
            await self._error_handlers.emit(RealtimeError(str(data.get("message") or "Unknown error")))
        else:
            log.debug("[RT IGNORE] unknown message type=%s", kind)
