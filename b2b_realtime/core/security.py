# Fichier: b2b_realtime/core/security.py

import logging
import re
from datetime import datetime, timezone
from typing import Optional, Protocol
from urllib.parse import unquote

from jose import JWTError, jwt

from b2b_realtime.core.exceptions import TokenExpiredError, TokenUnavailableError

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    """Anything able to hand out the current access token."""

    def get_access_token(self) -> Optional[str]:
        ...


class InMemoryTokenStore:
    """Token store backed by a single attribute, refreshed by the auth layer."""

    def __init__(self, access_token: Optional[str] = None) -> None:
        self._access_token = access_token

    def get_access_token(self) -> Optional[str]:
        return self._access_token

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    def clear(self) -> None:
        self._access_token = None


def normalize_token_value(raw_token: str | None) -> str | None:
    """Return a clean JWT string extracted from various storage formats.

    Stored tokens are sometimes quoted, percent-encoded (``Bearer%20…``) or
    carry a ``Bearer``/``Token`` prefix. We strip all of those.
    """

    if raw_token is None:
        return None

    token = raw_token.strip().strip('"').strip("'")
    if not token:
        return None

    token = unquote(token)

    match = re.match(r"^(bearer|token)[\s,:]+(.+)$", token, flags=re.IGNORECASE)
    if match:
        token = match.group(2)

    token = token.strip()
    return token or None


def token_expires_at(token: str) -> Optional[datetime]:
    """Read the ``exp`` claim without verifying the signature.

    The client never holds the signing key; the server remains the judge of
    validity. Opaque (non-JWT) tokens have no known expiry.
    """

    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None

    exp = claims.get("exp")
    if exp is None:
        return None
    try:
        return datetime.fromtimestamp(int(exp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring malformed exp claim: %r", exp)
        return None


def require_access_token(store: TokenStore, leeway_seconds: int = 0) -> str:
    """Return a usable access token or raise a precondition error."""

    token = normalize_token_value(store.get_access_token())
    if not token:
        raise TokenUnavailableError("No access token available")

    expires_at = token_expires_at(token)
    if expires_at is not None:
        now = datetime.now(timezone.utc).timestamp()
        if expires_at.timestamp() + leeway_seconds <= now:
            raise TokenExpiredError(f"Access token expired at {expires_at.isoformat()}")

    return token
