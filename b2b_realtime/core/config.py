# Fichier: b2b_realtime/core/config.py
from pydantic_settings import BaseSettings
from typing import Optional, List
from urllib.parse import urlsplit
from pydantic import ValidationError, field_validator
import sys


class Settings(BaseSettings):
    # --- Realtime server ---
    REALTIME_URL: Optional[str] = None
    REALTIME_SOCKETIO_PATH: str = "socket.io"
    REALTIME_TRANSPORTS: List[str] = ["websocket", "polling"]

    # --- REST API (conversation refresh, notification counts) ---
    API_BASE_URL: str = "http://localhost:5000/api"
    API_REQUEST_TIMEOUT_SECONDS: float = 15.0

    # --- Reconnection policy ---
    RECONNECT_BASE_DELAY_MS: int = 1000
    RECONNECT_MAX_ATTEMPTS: int = 5
    CONNECT_TIMEOUT_SECONDS: float = 10.0
    FALLBACK_TO_SIMULATED_PROGRESS: bool = True

    # 0 disables the heartbeat
    HEARTBEAT_INTERVAL_SECONDS: float = 30.0
    NOTIFICATION_HISTORY_ON_CONNECT: int = 10

    # --- Auth ---
    TOKEN_EXPIRY_LEEWAY_SECONDS: int = 0
    # Token used by the standalone inspection app; libraries pass their own store
    REALTIME_ACCESS_TOKEN: Optional[str] = None

    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    class Config:
        env_file = ".env"

    @field_validator("REALTIME_URL", mode="before")
    @classmethod
    def _normalize_realtime_url(cls, value: Optional[str]) -> Optional[str]:
        """Make sure the Socket.IO base URL uses an HTTP scheme.

        The frontend configuration historically stored ``ws://`` and ``wss://``
        URLs. Socket.IO negotiates over HTTP(S) before upgrading, and
        python-socketio rejects websocket schemes, so we rewrite them here and
        drop any trailing slash.
        """

        if not isinstance(value, str):
            return value

        value = value.strip()
        if not value:
            return None

        replacements = {
            "ws://": "http://",
            "wss://": "https://",
        }
        for prefix, target in replacements.items():
            if value.startswith(prefix):
                value = target + value[len(prefix) :]
                break

        return value.rstrip("/")

    @field_validator("API_BASE_URL", mode="before")
    @classmethod
    def _strip_api_trailing_slash(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @property
    def realtime_url(self) -> str:
        """Socket.IO server URL, derived from the API URL when not set explicitly."""

        if self.REALTIME_URL:
            return self.REALTIME_URL

        parts = urlsplit(self.API_BASE_URL)
        return f"{parts.scheme}://{parts.netloc}"


def _log_settings_validation_error(exc: ValidationError) -> None:
    """Print one line per bad realtime variable before the import fails."""

    print("Realtime configuration error:", file=sys.stderr)
    details = exc.errors()
    if not details:
        print(exc, file=sys.stderr)
        return
    for error in details:
        variable = ".".join(str(part) for part in error.get("loc", ())) or "<settings>"
        print(f"  - {variable}: {error.get('msg', 'invalid value')} ({error.get('type')})", file=sys.stderr)


try:
    settings = Settings()
except ValidationError as exc:  # pragma: no cover - exercised at runtime
    _log_settings_validation_error(exc)
    raise
