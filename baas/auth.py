"""Identity provider client (GoTrue-style ``/auth/v1`` endpoints).

Keeps the current session in memory and in a JSON file so that a later
process can bootstrap it, and notifies listeners on every change.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from noteapp.config import Settings
from noteapp.errors import AuthError
from noteapp.metrics import BACKEND_DURATION
from noteapp.models import AuthSession, Identity

logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[AuthSession]], Awaitable[None]]


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    return (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or fallback
    )


def _json_object(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as e:
        raise AuthError("Malformed response from identity provider") from e
    if not isinstance(body, dict):
        raise AuthError("Malformed response from identity provider")
    return body


def _identity_from(user: Any) -> Identity:
    try:
        return Identity.from_user(user)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise AuthError(f"Malformed user in provider response: {e}") from e


class AuthClient:
    """Async client for sign-up, sign-in, sign-out and session bootstrap."""

    name = "auth"

    def __init__(
        self, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._base_url = f"{settings.supabase_url.rstrip('/')}/auth/v1"
        self._anon_key = settings.supabase_anon_key
        self._session_file = settings.session_file
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._listeners: list[AuthListener] = []
        self._session: Optional[AuthSession] = None

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def get_session(self) -> Optional[AuthSession]:
        """Resolve a previously persisted session, refreshing it if expired.

        Returns None when nothing is stored or the stored credentials were
        rejected. Raises ``AuthError`` when the provider cannot be reached.
        """
        stored = self._read_stored()
        if stored is None:
            return None

        if stored.expired:
            if not stored.refresh_token:
                self._clear_stored()
                return None
            try:
                body = await self._call(
                    "refresh",
                    "POST",
                    "token",
                    params={"grant_type": "refresh_token"},
                    json={"refresh_token": stored.refresh_token},
                )
            except AuthError:
                self._clear_stored()
                return None
            session = self._session_from(body)
        else:
            resp = await self._send(
                "get_user", "GET", "user", token=stored.access_token
            )
            if resp.status_code in (401, 403):
                logger.info("Stored session rejected by provider; discarding it")
                self._clear_stored()
                return None
            if resp.status_code >= 400:
                raise AuthError(_error_message(resp, "Failed to resolve session"))
            session = stored.model_copy(update={"user": _identity_from(_json_object(resp))})

        self._session = session
        self._write_stored(session)
        return session

    async def sign_up(self, email: str, password: str, full_name: str) -> Identity:
        """Create an account; signs in immediately when no confirmation is needed."""
        body = await self._call(
            "sign_up",
            "POST",
            "signup",
            json={"email": email, "password": password, "data": {"full_name": full_name}},
        )
        if "access_token" in body:
            session = self._session_from(body)
            await self._set_session(session)
            return session.user
        return _identity_from(body.get("user") or body)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        body = await self._call(
            "sign_in",
            "POST",
            "token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._session_from(body)
        await self._set_session(session)
        return session

    async def sign_out(self) -> None:
        """End the session locally, revoking it remotely when possible."""
        current = self._session
        try:
            if current is not None:
                await self._call("sign_out", "POST", "logout", token=current.access_token)
        except AuthError as e:
            logger.warning("Remote sign-out failed, clearing local session: %s", e)
        finally:
            self._clear_stored()
            await self._set_session(None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _set_session(self, session: Optional[AuthSession]) -> None:
        self._session = session
        if session is not None:
            self._write_stored(session)
        for listener in list(self._listeners):
            try:
                await listener(session)
            except Exception:
                logger.exception("Auth state listener failed")

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"apikey": self._anon_key}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        start = time.perf_counter()
        try:
            return await self._client.request(
                method,
                f"{self._base_url}/{path}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning("Auth %s failed: %s", operation, e)
            raise AuthError(f"Identity provider unreachable: {e}") from e
        finally:
            BACKEND_DURATION.labels(backend=self.name, operation=operation).observe(
                time.perf_counter() - start
            )

    async def _call(self, operation: str, method: str, path: str, **kwargs: Any) -> dict:
        resp = await self._send(operation, method, path, **kwargs)
        if resp.status_code >= 400:
            raise AuthError(_error_message(resp, f"{operation} failed"))
        if not resp.content:
            return {}
        return _json_object(resp)

    @staticmethod
    def _session_from(body: dict[str, Any]) -> AuthSession:
        try:
            expires_at = body.get("expires_at")
            if expires_at is None and body.get("expires_in") is not None:
                expires_at = int(time.time()) + int(body["expires_in"])
            return AuthSession(
                access_token=body["access_token"],
                refresh_token=body.get("refresh_token"),
                expires_at=expires_at,
                user=Identity.from_user(body["user"]),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise AuthError(f"Malformed session response: {e}") from e

    def _read_stored(self) -> Optional[AuthSession]:
        if not self._session_file.exists():
            return None
        try:
            return AuthSession.model_validate_json(
                self._session_file.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self._session_file, e)
            return None

    def _write_stored(self, session: AuthSession) -> None:
        try:
            self._session_file.parent.mkdir(parents=True, exist_ok=True)
            self._session_file.write_text(session.model_dump_json(), encoding="utf-8")
            self._session_file.chmod(0o600)
        except OSError as e:
            logger.warning("Could not persist session: %s", e)

    def _clear_stored(self) -> None:
        self._session = None
        self._session_file.unlink(missing_ok=True)
