from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import quote

from logger import get_logger
from session_store import SessionStore

logger = get_logger("expiry")

RestartCallback = Callable[[str], Union[None, Awaitable[None]]]


class AuthState(str, Enum):
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class Navigator:
    """Issues hard navigations.

    A hard navigation discards all in-memory state tied to the old session,
    so it is delegated to ``on_restart`` which re-initializes the application.
    """

    def __init__(self, on_restart: Optional[RestartCallback] = None) -> None:
        self.on_restart = on_restart
        self.history: list[str] = []

    async def hard_navigate(self, url: str) -> None:
        logger.info("Hard navigation to %s", url)
        self.history.append(url)
        if self.on_restart is not None:
            result = self.on_restart(url)
            if inspect.isawaitable(result):
                await result


class SessionExpiryHandler:
    """Tears the session down on logout or when the backend rejects the token."""

    def __init__(
        self,
        store: SessionStore,
        navigator: Optional[Navigator] = None,
        login_path: str = "/login",
    ) -> None:
        self.store = store
        self.navigator = navigator if navigator is not None else Navigator()
        self.login_path = login_path
        self.state = (
            AuthState.AUTHENTICATED
            if store.get() is not None
            else AuthState.UNAUTHENTICATED
        )
        self._teardowns: dict[int, asyncio.Future] = {}

    def mark_authenticated(self) -> None:
        """Record a login performed by the login flow."""
        self.state = AuthState.AUTHENTICATED

    async def logout(self, epoch: Optional[int] = None) -> bool:
        """Explicit logout. A logout for an already replaced session is ignored."""
        if epoch is None:
            epoch = self.store.epoch
        if epoch != self.store.epoch:
            await self._wait_for_teardown(epoch)
            return False
        return await self._teardown(epoch, self.login_path, "logout")

    async def handle_unauthorized(
        self, epoch: int, reason: str = "unauthorized"
    ) -> bool:
        """React to a 401 raised by a request sent during ``epoch``.

        Returns True if this call performed the teardown. Signals from an
        older session, or repeats within the same session, are ignored, but
        only return once a teardown already running for them has finished.
        """
        if epoch != self.store.epoch:
            logger.info(
                "Ignoring %s from stale session epoch %d (current %d)",
                reason,
                epoch,
                self.store.epoch,
            )
            await self._wait_for_teardown(epoch)
            return False
        return await self._teardown(epoch, self.login_path, reason)

    async def handle_relogin_required(self, epoch: int, message: str) -> bool:
        """React to an in-band 'coach not found. please re-login' body."""
        if epoch != self.store.epoch:
            await self._wait_for_teardown(epoch)
            return False
        target = (
            f"{self.login_path}?error=coach_not_found&message={quote(message, safe='')}"
        )
        return await self._teardown(epoch, target, "relogin required")

    async def _wait_for_teardown(self, epoch: int) -> None:
        pending = self._teardowns.get(epoch)
        if pending is not None:
            await asyncio.shield(pending)

    async def _teardown(self, epoch: int, target: str, reason: str) -> bool:
        # checked and registered with no await in between
        if epoch in self._teardowns:
            await self._wait_for_teardown(epoch)
            return False
        self._teardowns = {
            e: f for e, f in self._teardowns.items() if e > epoch or not f.done()
        }
        finished = asyncio.get_running_loop().create_future()
        self._teardowns[epoch] = finished
        logger.warning("Session ended: %s", reason)
        self.store.clear()
        # rejections of the now empty session wait for this teardown too
        self._teardowns[self.store.epoch] = finished
        self.state = AuthState.UNAUTHENTICATED
        try:
            await self.navigator.hard_navigate(target)
        finally:
            finished.set_result(None)
        return True
