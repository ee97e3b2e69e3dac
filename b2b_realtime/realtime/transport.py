"""Socket.IO transport used by the connection manager.

The server mounts Socket.IO on the API host and authenticates with
``auth: { token }`` at connection time. python-socketio's own reconnection is
disabled: the connection manager owns the retry policy.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import socketio
from socketio.exceptions import SocketIOError

log = logging.getLogger("realtime")

EventHandler = Callable[..., Awaitable[None]]

# Failures worth a retry: handshake refused or timed out, network errors.
TRANSIENT_ERRORS = (SocketIOError, asyncio.TimeoutError, OSError)


class SocketIOTransport:
    """Thin async wrapper around :class:`socketio.AsyncClient`."""

    def __init__(
        self,
        url: str,
        *,
        socketio_path: str = "socket.io",
        transports: Optional[Sequence[str]] = None,
        connect_timeout: float = 10.0,
        ack_timeout: float = 10.0,
        client: Optional[socketio.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.socketio_path = socketio_path
        self.transports = list(transports) if transports else ["websocket", "polling"]
        self.connect_timeout = connect_timeout
        self.ack_timeout = ack_timeout
        self._client = client or socketio.AsyncClient(
            reconnection=False,
            logger=False,
            engineio_logger=False,
        )

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    @property
    def sid(self) -> Optional[str]:
        return self._client.sid

    def on(self, event: str, handler: EventHandler) -> None:
        self._client.on(event, handler)

    async def connect(self, token: str) -> None:
        """Open the connection, raising ``socketio.exceptions.ConnectionError`` on failure."""

        log.info("[RT TRANSPORT] connecting url=%s path=%s", self.url, self.socketio_path)
        await self._client.connect(
            self.url,
            auth={"token": token},
            transports=self.transports,
            socketio_path=self.socketio_path,
            wait_timeout=self.connect_timeout,
        )

    async def disconnect(self) -> None:
        if self._client.connected:
            await self._client.disconnect()

    async def emit(self, event: str, data: Any) -> None:
        await self._client.emit(event, data)

    async def call(self, event: str, data: Any, timeout: Optional[float] = None) -> Any:
        """Emit ``event`` and wait for the server acknowledgement."""

        return await self._client.call(event, data, timeout=timeout or self.ack_timeout)
