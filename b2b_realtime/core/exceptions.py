"""Error taxonomy shared by the realtime client."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base class for every error raised or reported by the realtime client."""


class TokenUnavailableError(RealtimeError):
    """No usable access token. A precondition failure, never retried."""

    reason = "unauthorized"


class TokenExpiredError(TokenUnavailableError):
    """The stored access token has expired."""

    reason = "jwt_expired"


class NotConnectedError(RealtimeError):
    """A command was issued while the socket is not connected."""


class CommandRejectedError(RealtimeError):
    """The server acknowledged a command with ``success: false``."""

    def __init__(self, event: str, error: str | None = None) -> None:
        self.event = event
        self.error = error or "unknown_error"
        super().__init__(f"{event} rejected: {self.error}")


class RetryExhaustedError(RealtimeError):
    """The reconnection policy gave up. Terminal for the connection."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Failed to reconnect to realtime server after {attempts} attempts")
