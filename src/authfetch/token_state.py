"""
Access token storage and expiry checks.
"""

import base64
import binascii
import json
import logging
import math
import time
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class TokenPair(BaseModel):
    """An access token together with the refresh token issued alongside it."""

    access_token: str
    refresh_token: str | None = None

    model_config = ConfigDict(extra="ignore")


class TokenStore(Protocol):
    """Protocol for token storage implementations."""

    async def get_access_token(self) -> str | None:
        """Get the stored access token."""
        ...

    async def get_refresh_token(self) -> str | None:
        """Get the stored refresh token."""
        ...

    async def set_tokens(self, access_token: str, refresh_token: str | None) -> None:
        """Store both tokens."""
        ...


class InMemoryTokenStore:
    """Token store that keeps the pair in process memory."""

    def __init__(self, access_token: str | None = None, refresh_token: str | None = None):
        self._access_token = access_token
        self._refresh_token = refresh_token

    async def get_access_token(self) -> str | None:
        return self._access_token

    async def get_refresh_token(self) -> str | None:
        return self._refresh_token

    async def set_tokens(self, access_token: str, refresh_token: str | None) -> None:
        self._access_token = access_token
        self._refresh_token = refresh_token


def _decode_claims(token: str) -> dict[str, Any] | None:
    segments = token.split(".")
    if len(segments) != 3 or not segments[1]:
        return None

    payload = segments[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None

    return claims if isinstance(claims, dict) else None


def token_expiry(token: str | None) -> float | None:
    """Return the ``exp`` claim of a JWT-shaped token, or None if it cannot be read."""
    if not token:
        return None

    claims = _decode_claims(token)
    if claims is None:
        return None

    exp = claims.get("exp")
    # bool is an int subclass but never a valid timestamp
    if isinstance(exp, bool) or not isinstance(exp, int | float):
        return None
    try:
        expiry = float(exp)
    except OverflowError:
        return None
    return expiry if math.isfinite(expiry) else None


def is_expired(token: str | None, now: float | None = None) -> bool:
    """Check whether a token must be refreshed before use.

    Anything that cannot be decoded into a numeric ``exp`` claim counts as expired.
    """
    expiry = token_expiry(token)
    if expiry is None:
        return True

    if now is None:
        now = time.time()
    return expiry <= now


class TokenState:
    """The client's view of the current token pair, backed by a TokenStore."""

    def __init__(self, store: TokenStore):
        self.store = store

    async def access_token(self) -> str | None:
        return await self.store.get_access_token()

    async def refresh_token(self) -> str | None:
        return await self.store.get_refresh_token()

    async def is_expired(self) -> bool:
        return is_expired(await self.access_token())

    async def replace(self, tokens: TokenPair) -> None:
        """Store a freshly issued pair; both tokens are written in one call.

        A result without a refresh token keeps the current one.
        """
        refresh_token = tokens.refresh_token
        if refresh_token is None:
            refresh_token = await self.refresh_token()
        await self.store.set_tokens(tokens.access_token, refresh_token)
        logger.debug(f"Token pair replaced, new expiry: {token_expiry(tokens.access_token)}")
