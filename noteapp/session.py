"""Session Store: the current authenticated identity and its lifecycle."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol

from noteapp.models import AuthSession, Identity

logger = logging.getLogger(__name__)

SessionListener = Callable[[Optional[AuthSession]], Awaitable[None]]


class IdentityProvider(Protocol):
    """What the store needs from the identity provider client."""

    def on_auth_state_change(self, listener: SessionListener) -> Callable[[], None]: ...

    async def get_session(self) -> Optional[AuthSession]: ...

    async def sign_up(self, email: str, password: str, full_name: str) -> Identity: ...

    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    async def sign_out(self) -> None: ...

    async def close(self) -> None: ...


class SessionStore:
    """Holds the current session and fans out changes to listeners.

    ``resolving`` stays True until ``start()`` has resolved any session
    established by an earlier process. Bootstrap failures resolve to the
    anonymous state instead of propagating.
    """

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider
        self._session: Optional[AuthSession] = None
        self._resolving = True
        self._listeners: list[SessionListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    @property
    def identity(self) -> Optional[Identity]:
        return self._session.user if self._session else None

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    @property
    def resolving(self) -> bool:
        return self._resolving

    def subscribe(self, listener: SessionListener) -> None:
        """Register a coroutine called with the new session on every change."""
        self._listeners.append(listener)

    async def start(self) -> None:
        """Subscribe to provider changes and resolve the existing session."""
        if self._unsubscribe is None:
            self._unsubscribe = self._provider.on_auth_state_change(self._on_change)
        try:
            session = await self._provider.get_session()
        except Exception as e:
            logger.warning("Session bootstrap failed, continuing signed out: %s", e)
            session = None
        try:
            await self._on_change(session)
        finally:
            self._resolving = False
        logger.info(
            "Session resolved: %s", session.user.id if session else "anonymous"
        )

    def close(self) -> None:
        """Stop listening to the provider."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str, full_name: str) -> Identity:
        return await self._provider.sign_up(email, password, full_name)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        return await self._provider.sign_in(email, password)

    async def sign_out(self) -> None:
        """Sign out; local state is cleared even if the provider call fails."""
        try:
            await self._provider.sign_out()
        finally:
            if self._session is not None:
                await self._on_change(None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _on_change(self, session: Optional[AuthSession]) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                await listener(session)
            except Exception:
                logger.exception("Session listener failed")
