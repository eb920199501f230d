"""
Single-flight token refresh.

Any number of concurrent requests may ask for a fresh token; exactly one of
them (the leader) runs the refresh operation while the others queue behind it
and receive the same outcome.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

import anyio

from authfetch.errors import AuthRefreshFailed
from authfetch.token_state import TokenPair, TokenState, is_expired

logger = logging.getLogger(__name__)

RefreshOperation = Callable[[str | None], Awaitable[TokenPair | Mapping[str, Any]]]
AuthFailureHook = Callable[[], Awaitable[None] | None]


class RefreshState(Enum):
    """Refresh coordinator states."""

    IDLE = auto()
    REFRESHING = auto()


@dataclass
class _Waiter:
    """A caller queued behind an in-flight refresh."""

    event: anyio.Event = field(default_factory=anyio.Event)
    token: str | None = None
    error: AuthRefreshFailed | None = None

    def resolve(self, token: str) -> None:
        self.token = token
        self.event.set()

    def reject(self, error: AuthRefreshFailed) -> None:
        self.error = error
        self.event.set()

    async def wait(self) -> str:
        await self.event.wait()
        if self.error is not None:
            raise self.error
        assert self.token is not None
        return self.token


class RefreshCoordinator:
    """
    Owns the refresh state and waiter queue for one client.

    The IDLE -> REFRESHING transition, queue appends and the final drain all
    happen while holding ``_lock``. The lock is not held while the refresh
    operation itself runs.
    """

    def __init__(
        self,
        token_state: TokenState,
        refresh_operation: RefreshOperation,
        on_auth_failure: AuthFailureHook | None = None,
        refresh_timeout: float | None = None,
    ):
        self.token_state = token_state
        self.refresh_operation = refresh_operation
        self.on_auth_failure = on_auth_failure
        self.refresh_timeout = refresh_timeout
        self.refresh_count = 0

        self._state = RefreshState.IDLE
        self._waiters: list[_Waiter] = []
        self._lock = anyio.Lock()

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    async def ensure_fresh_token(self, rejected_token: str | None = None) -> str:
        """
        Return a usable access token, refreshing it if needed.

        Without ``rejected_token`` a refresh only happens when the stored token is
        expired. With it (the token a server just answered 401 to) a refresh
        happens unless the stored token was already replaced by someone else.
        Callers arriving while a refresh is in flight join that refresh.

        Raises:
            AuthRefreshFailed: If the refresh operation fails.
        """
        waiter: _Waiter | None = None
        async with self._lock:
            if self._state is RefreshState.REFRESHING:
                waiter = _Waiter()
                self._waiters.append(waiter)
            else:
                current = await self.token_state.access_token()
                if current is not None and current != rejected_token and not is_expired(current):
                    return current
                self._state = RefreshState.REFRESHING
                self.refresh_count += 1

        if waiter is not None:
            logger.debug("Refresh already in flight, waiting for it")
            return await waiter.wait()

        return await self._lead_refresh()

    async def _lead_refresh(self) -> str:
        # Shielded so that cancelling the leader never strands the waiters
        with anyio.CancelScope(shield=True):
            try:
                with anyio.fail_after(self.refresh_timeout):
                    tokens = await self._refresh()
            except Exception as e:
                error = AuthRefreshFailed(f"Token refresh failed: {e}")
                error.__cause__ = e
                await self._drain(error=error)
                logger.warning(f"Token refresh failed: {e}")
                await self.notify_auth_failure()
                raise error

            await self._drain(token=tokens.access_token)
            logger.debug("Token refresh successful")
            return tokens.access_token

    async def _refresh(self) -> TokenPair:
        logger.debug("Refreshing access token")
        refresh_token = await self.token_state.refresh_token()
        result = await self.refresh_operation(refresh_token)
        tokens = result if isinstance(result, TokenPair) else TokenPair.model_validate(result)
        await self.token_state.replace(tokens)
        return tokens

    async def _drain(self, token: str | None = None, error: AuthRefreshFailed | None = None) -> None:
        async with self._lock:
            self._state = RefreshState.IDLE
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if error is not None:
                    waiter.reject(error)
                else:
                    assert token is not None
                    waiter.resolve(token)

        if waiters:
            logger.debug(f"Released {len(waiters)} queued request(s)")

    async def notify_auth_failure(self) -> None:
        """Invoke the auth failure hook; errors raised by the hook are logged."""
        if self.on_auth_failure is None:
            return

        try:
            result = self.on_auth_failure()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Auth failure hook raised")
