# Fichier: b2b_realtime/services/rest_api.py

import logging
from typing import Any, Dict, List, Optional

import anyio
import requests
from pydantic import ValidationError

from b2b_realtime.conversations.schemas import ChatMessage, Conversation
from b2b_realtime.core.exceptions import RealtimeError
from b2b_realtime.core.security import TokenStore, require_access_token
from b2b_realtime.notifications.schemas import NotificationCounts

logger = logging.getLogger(__name__)


class MarketplaceApi:
    """Small REST client for the endpoints the realtime layer depends on.

    ``requests`` is blocking, so every round-trip runs in a worker thread.
    Responses use the ``{"success": bool, "data": {...}}`` envelope.
    """

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore,
        *,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token_store = token_store
        self.timeout = timeout
        self._session = session or requests.Session()

    async def list_conversations(self) -> List[Conversation]:
        data = await self._get("/chat/conversations")
        try:
            return [Conversation.model_validate(item) for item in data.get("conversations") or []]
        except ValidationError as exc:
            logger.error("Réponse conversations invalide: %s", exc)
            raise RealtimeError("Invalid conversation list response") from exc

    async def list_messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> List[ChatMessage]:
        data = await self._get(
            f"/chat/conversations/{conversation_id}/messages",
            params={"limit": limit, "offset": offset},
        )
        try:
            return [ChatMessage.model_validate(item) for item in data.get("messages") or []]
        except ValidationError as exc:
            logger.error("Réponse messages invalide (conversation=%s): %s", conversation_id, exc)
            raise RealtimeError("Invalid message list response") from exc

    async def get_notification_counts(self) -> NotificationCounts:
        # limit=1: only the counters are needed
        data = await self._get("/connection/notifications", params={"page": 1, "limit": 1})
        return NotificationCounts(
            unread_count=int(data.get("unread_count") or 0),
            pending_connections_count=int(data.get("pending_count") or 0),
            total_count=int(data.get("total") or 0),
        )

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = require_access_token(self._token_store)
        url = f"{self.base_url}{path}"

        def _request() -> requests.Response:
            return self._session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )

        try:
            response = await anyio.to_thread.run_sync(_request)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            logger.error("Erreur lors de l'appel GET %s : %s", url, exc)
            raise RealtimeError(f"GET {path} failed: {exc}") from exc
        except ValueError as exc:
            logger.error("Réponse non JSON pour GET %s", url)
            raise RealtimeError(f"GET {path} returned invalid JSON") from exc

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise RealtimeError(message or f"GET {path} was not successful")
        return body.get("data") or {}
